import copy
import random

import pytest

from privategallery import folders
from privategallery.errors import NotFound, ValidationError


@pytest.fixture
def doc():
    return folders.new_user_document('u1', 'alice', 'alice@example.com', 'hash')


def test_new_document_has_only_an_empty_root(doc):
    root = doc['folders']['root']
    assert list(doc['folders']) == ['root']
    assert root['files'] == []
    assert root['subfolders'] == []
    assert folders.check_tree(doc) == []


def test_create_then_delete_folder(doc):
    f1 = folders.create_folder(doc, 'Trip', 'root')
    assert doc['folders']['root']['subfolders'] == [f1]
    assert doc['folders'][f1]['name'] == 'Trip'

    removed = folders.delete_folder(doc, f1, 'root')
    assert removed == [f1]
    assert doc['folders']['root']['subfolders'] == []
    assert f1 not in doc['folders']


def test_create_under_missing_parent_is_rejected(doc):
    before = copy.deepcopy(doc)
    with pytest.raises(NotFound):
        folders.create_folder(doc, 'Orphan', 'nope')
    assert doc == before


@pytest.mark.parametrize('name', ['', '   ', 'a/b', 'x' * 256])
def test_bad_folder_names(doc, name):
    with pytest.raises(ValidationError):
        folders.create_folder(doc, name)


def test_root_is_never_deletable(doc):
    with pytest.raises(ValidationError):
        folders.delete_folder(doc, 'root')


def test_deleting_twice_is_a_noop(doc):
    f1 = folders.create_folder(doc, 'Trip')
    folders.delete_folder(doc, f1, 'root')
    after_first = copy.deepcopy(doc)
    assert folders.delete_folder(doc, f1, 'root') == []
    assert doc['folders'].keys() == after_first['folders'].keys()
    assert doc['folders']['root']['subfolders'] == []


def test_recursive_delete_reaches_every_file(doc):
    f1 = folders.create_folder(doc, 'Trip')
    f2 = folders.create_folder(doc, 'Day 1', f1)
    f3 = folders.create_folder(doc, 'Morning', f2)
    keep = folders.create_folder(doc, 'Keep')
    folders.add_file_to_folder(doc, f1, 'a')
    folders.add_file_to_folder(doc, f3, 'b')
    folders.add_file_to_folder(doc, keep, 'c')

    deleted = []
    removed = folders.delete_folder(doc, f1, 'root', delete_file=deleted.append)

    assert sorted(deleted) == ['a', 'b']
    assert set(removed) == {f1, f2, f3}
    assert set(doc['folders']) == {'root', keep}
    assert doc['folders']['root']['subfolders'] == [keep]
    assert folders.check_tree(doc) == []


def test_failed_file_delete_leaves_folder_attached(doc):
    f1 = folders.create_folder(doc, 'Trip')
    f2 = folders.create_folder(doc, 'Inner', f1)
    folders.add_file_to_folder(doc, f2, 'a')
    folders.add_file_to_folder(doc, f1, 'b')
    snapshot = copy.deepcopy(doc)

    def failing(file_id):
        if file_id == 'b':
            raise OSError("disk gone")

    with pytest.raises(OSError):
        folders.delete_folder(doc, f1, 'root', delete_file=failing)
    assert doc == snapshot


def test_wrong_parent_hint_still_detaches(doc):
    f1 = folders.create_folder(doc, 'A')
    f2 = folders.create_folder(doc, 'B', f1)
    folders.delete_folder(doc, f2, 'root')
    assert doc['folders'][f1]['subfolders'] == []
    assert f2 not in doc['folders']


def test_deep_tree_deletes_without_recursion(doc):
    parent = 'root'
    first = None
    for depth in range(3000):
        parent = folders.create_folder(doc, f"level {depth}", parent)
        first = first or parent
    folders.delete_folder(doc, first, 'root')
    assert list(doc['folders']) == ['root']


def test_random_create_delete_sequences_keep_tree_well_formed(doc):
    rng = random.Random(1234)
    for step in range(300):
        existing = list(doc['folders'])
        if rng.random() < 0.6 or len(existing) == 1:
            folders.create_folder(doc, f"f{step}", rng.choice(existing))
        else:
            victim = rng.choice([f for f in existing if f != 'root'])
            folders.delete_folder(doc, victim, folders.find_parent(doc, victim))
        assert folders.check_tree(doc) == []


def test_file_list_removal_keeps_order(doc):
    for file_id in ('a', 'b', 'c', 'd'):
        folders.add_file_to_folder(doc, 'root', file_id)
    folders.remove_file_from_folder(doc, 'root', 'b')
    assert doc['folders']['root']['files'] == ['a', 'c', 'd']
    assert folders.remove_file_from_folder(doc, 'missing', 'a') is False


def test_adding_a_file_twice_keeps_one_entry(doc):
    folders.add_file_to_folder(doc, 'root', 'a')
    folders.add_file_to_folder(doc, 'root', 'a')
    assert doc['folders']['root']['files'] == ['a']
    assert folders.find_file_folder(doc, 'a') == 'root'


def test_rename_and_move(doc):
    a = folders.create_folder(doc, 'A')
    b = folders.create_folder(doc, 'B')
    folders.rename_folder(doc, a, '  Holidays ')
    assert doc['folders'][a]['name'] == 'Holidays'

    folders.move_folder(doc, b, a)
    assert doc['folders']['root']['subfolders'] == [a]
    assert doc['folders'][a]['subfolders'] == [b]
    assert folders.folder_path(doc, b) == [
        {'id': 'root', 'name': doc['folders']['root']['name']},
        {'id': a, 'name': 'Holidays'},
        {'id': b, 'name': 'B'},
    ]
    assert folders.check_tree(doc) == []


def test_move_into_own_subtree_is_rejected(doc):
    a = folders.create_folder(doc, 'A')
    b = folders.create_folder(doc, 'B', a)
    with pytest.raises(ValidationError):
        folders.move_folder(doc, a, b)
    with pytest.raises(ValidationError):
        folders.move_folder(doc, a, a)
    with pytest.raises(ValidationError):
        folders.move_folder(doc, 'root', a)


def test_list_empty_folder_returns_lists(doc):
    a = folders.create_folder(doc, 'A')
    listing = folders.list_folder(doc, a)
    assert listing['files'] == []
    assert listing['subfolders'] == []


def test_check_tree_reports_damage(doc):
    a = folders.create_folder(doc, 'A')
    b = folders.create_folder(doc, 'B')
    doc['folders'][a]['subfolders'].append(b)
    doc['folders']['lost'] = folders.new_folder('lost', 'Lost')
    doc['folders']['root']['subfolders'].append('ghost')

    problems = folders.check_tree(doc)
    assert f"folder {b} has more than one parent" in problems
    assert "folder lost is not reachable from root" in problems
    assert "folder root lists unknown subfolder ghost" in problems
