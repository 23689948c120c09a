######## YOUR SETUP #############

PORT=8080 # Flask server port number
GALLERY='/absolute/path/to/my/gallery' # data/ and uploads/ are created here, with write permission to who is starting server.py

#################################


import logging
import os

from privategallery import create_app

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
logger = logging.getLogger('privategallery.server')

# Environment variables (GALLERY_DATA_DIR, GALLERY_UPLOAD_DIR) win over the setup block.
library_root = os.path.abspath(os.getenv('GALLERY_ROOT', GALLERY))

app = create_app({
    'DATA_DIR': os.getenv('GALLERY_DATA_DIR', os.path.join(library_root, 'data')),
    'UPLOAD_DIR': os.getenv('GALLERY_UPLOAD_DIR', os.path.join(library_root, 'uploads')),
})


def _initial_integrity_scan():
    """Checks every user's folder tree and file references on startup. Reports, never repairs."""
    logger.info("Performing initial integrity scan...")
    report = app.extensions['gallery'].check_library()
    logger.info("Integrity scan complete: %d user(s), %d problem(s).", report['users'], len(report['problems']))


if __name__ == '__main__':
    _initial_integrity_scan() # Run initial scan on startup
    app.run(host='0.0.0.0', debug=False, port=int(os.getenv('PORT', PORT)))
