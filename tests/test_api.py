import io

import pytest

from conftest import png_bytes


def register(client, username='alice', email='alice@example.com'):
    response = client.post('/api/auth/register', json={
        'username': username, 'email': email, 'password': 'Passw0rd'})
    assert response.status_code == 201
    return response.get_json()['user']


def upload(client, user_id, folder_id, *names):
    files = [(io.BytesIO(png_bytes()), name) for name in names]
    return client.post('/api/files', data={'userId': user_id, 'folderId': folder_id, 'files': files},
                       content_type='multipart/form-data')


@pytest.fixture
def user(client):
    return register(client)


def test_health(client):
    assert client.get('/api/health').get_json() == {'status': 'ok'}


def test_register_and_login(client, user):
    assert user['username'] == 'alice'

    duplicate = client.post('/api/auth/register', json={
        'username': 'alice', 'email': 'x@example.com', 'password': 'Passw0rd'})
    assert duplicate.status_code == 409
    assert duplicate.get_json()['kind'] == 'DuplicateError'

    ok = client.post('/api/auth/login', json={'username': 'alice', 'password': 'Passw0rd'})
    assert ok.status_code == 200
    assert ok.get_json()['user']['id'] == user['id']

    bad = client.post('/api/auth/login', json={'username': 'alice', 'password': 'nope!!'})
    assert bad.status_code == 401
    assert bad.get_json()['kind'] == 'InvalidCredentials'


def test_user_document_hides_password(client, user):
    doc = client.get(f"/api/users/{user['id']}").get_json()
    assert 'passwordHash' not in doc
    assert doc['folders']['root']['subfolders'] == []
    assert client.get('/api/users/ghost').status_code == 404


def test_folder_lifecycle(client, user):
    created = client.post('/api/folders', json={'userId': user['id'], 'folderName': 'Trip'})
    assert created.status_code == 201
    folder_id = created.get_json()['folderId']

    renamed = client.patch(f'/api/folders/{folder_id}', json={'userId': user['id'], 'name': 'Holiday'})
    assert renamed.status_code == 200
    listing = client.get(f"/api/folders/{folder_id}?userId={user['id']}").get_json()
    assert listing['folder']['name'] == 'Holiday'

    missing_parent = client.post('/api/folders', json={
        'userId': user['id'], 'folderName': 'X', 'parentFolderId': 'nope'})
    assert missing_parent.status_code == 404

    deleted = client.delete(f'/api/folders/{folder_id}', json={'userId': user['id'], 'parentFolderId': 'root'})
    assert deleted.status_code == 200
    root = client.get(f"/api/users/{user['id']}").get_json()['folders']['root']
    assert root['subfolders'] == []

    root_delete = client.delete('/api/folders/root', json={'userId': user['id']})
    assert root_delete.status_code == 400
    assert root_delete.get_json()['kind'] == 'ValidationError'


def test_upload_and_fetch_file(client, user):
    response = upload(client, user['id'], 'root', 'a.png', 'b.png')
    assert response.status_code == 201
    file_ids = response.get_json()['files']
    assert len(file_ids) == 2

    record = client.get(f'/api/files/{file_ids[0]}').get_json()
    assert record['name'] == 'a.png'
    assert record['type'] == 'image/png'

    content = client.get(f'/api/files/{file_ids[0]}/content?download=1')
    assert content.status_code == 200
    assert content.data == png_bytes()
    assert 'attachment' in content.headers['Content-Disposition']
    content.close()

    patched = client.patch(f'/api/files/{file_ids[0]}', json={'metadata': {'description': 'Blue'}})
    assert patched.get_json()['file']['description'] == 'Blue'
    protected = client.patch(f'/api/files/{file_ids[0]}', json={'size': 1})
    assert protected.status_code == 400


def test_upload_reports_rejected_files(client, user):
    files = [(io.BytesIO(b'MZ'), 'virus.exe'), (io.BytesIO(png_bytes()), 'ok.png')]
    response = client.post('/api/files', data={'userId': user['id'], 'folderId': 'root', 'files': files},
                           content_type='multipart/form-data')
    assert response.status_code == 400
    body = response.get_json()
    assert len(body['files']) == 1
    assert body['failed'] == [{'name': 'virus.exe', 'kind': 'UnsupportedType',
                               'error': 'File type not allowed: .exe'}]


def test_missing_file_is_404(client):
    response = client.get('/api/files/doesnotexist')
    assert response.status_code == 404
    assert response.get_json()['kind'] == 'NotFound'


def test_delete_file(client, user):
    [file_id] = upload(client, user['id'], 'root', 'a.png').get_json()['files']
    for _ in range(2):
        response = client.delete(f'/api/files/{file_id}', json={'userId': user['id'], 'folderId': 'root'})
        assert response.status_code == 200
    assert client.get(f'/api/files/{file_id}').status_code == 404


def test_search(client, user):
    upload(client, user['id'], 'root', 'beach.png', 'forest.png')
    found = client.get(f"/api/search?userId={user['id']}&q=beach").get_json()
    assert found['count'] == 1
    assert found['files'][0]['name'] == 'beach.png'
    assert client.get(f"/api/search?userId={user['id']}&sort=color").status_code == 400


def test_shares(client, user):
    folder_id = client.post('/api/folders', json={'userId': user['id'], 'folderName': 'Trip'}).get_json()['folderId']
    [file_id] = upload(client, user['id'], folder_id, 'a.png').get_json()['files']

    created = client.post('/api/shares', json={'userId': user['id'], 'folderId': folder_id,
                                               'protectedDownload': True})
    assert created.status_code == 201
    share = created.get_json()
    assert share['url'] == f"http://localhost/api/shares/{share['shareId']}/view?token={share['token']}"

    token = share['token']
    assert client.get(f"/api/shares/{share['shareId']}?token={token}").get_json()['folderId'] == folder_id
    assert client.get(f"/api/shares/{share['shareId']}?token=wrong").status_code == 404

    view = client.get(share['url']).get_json()
    assert [f['id'] for f in view['files']] == [file_id]

    inline = client.get(f"/api/shares/{share['shareId']}/files/{file_id}?token={token}")
    assert inline.status_code == 200
    inline.close()
    download = client.get(f"/api/shares/{share['shareId']}/files/{file_id}?token={token}&download=1")
    assert download.status_code == 403

    bob = register(client, 'bob', 'bob@example.com')
    forbidden = client.delete(f"/api/shares/{share['shareId']}", json={'userId': bob['id']})
    assert forbidden.status_code == 403
    assert len(client.get(f"/api/shares?userId={user['id']}").get_json()) == 1

    assert client.delete(f"/api/shares/{share['shareId']}", json={'userId': user['id']}).status_code == 200
    assert client.get(f"/api/shares?userId={user['id']}").get_json() == []


def test_search_tags_tolerate_spaces_after_commas(client, user):
    [tagged, _] = upload(client, user['id'], 'root', 'a.png', 'b.png').get_json()['files']
    client.patch(f'/api/files/{tagged}', json={'tags': ['beach', 'sunset']})

    for tags in ('beach,sunset', 'beach, sunset', ' beach ,sunset '):
        found = client.get('/api/search', query_string={'userId': user['id'], 'tags': tags}).get_json()
        assert [f['id'] for f in found['files']] == [tagged]


def test_folder_patch_saves_both_changes_or_neither(client, user):
    outer = client.post('/api/folders', json={'userId': user['id'], 'folderName': 'Outer'}).get_json()['folderId']
    inner = client.post('/api/folders', json={'userId': user['id'], 'folderName': 'Inner',
                                              'parentFolderId': outer}).get_json()['folderId']

    bad = client.patch(f'/api/folders/{outer}', json={'userId': user['id'], 'name': 'Renamed',
                                                       'parentFolderId': inner})
    assert bad.status_code == 400
    doc = client.get(f"/api/users/{user['id']}").get_json()
    assert doc['folders'][outer]['name'] == 'Outer'
    assert doc['folders']['root']['subfolders'] == [outer]

    other = client.post('/api/folders', json={'userId': user['id'], 'folderName': 'Other'}).get_json()['folderId']
    ok = client.patch(f'/api/folders/{inner}', json={'userId': user['id'], 'name': 'Moved',
                                                      'parentFolderId': other})
    assert ok.status_code == 200
    assert ok.get_json()['folder']['name'] == 'Moved'
    doc = client.get(f"/api/users/{user['id']}").get_json()
    assert doc['folders'][other]['subfolders'] == [inner]
    assert doc['folders'][outer]['subfolders'] == []

    empty = client.patch(f'/api/folders/{inner}', json={'userId': user['id']})
    assert empty.status_code == 400
