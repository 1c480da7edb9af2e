import os
from datetime import datetime
from flask import current_app
from werkzeug.utils import secure_filename
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Image uploads for employees, machines, materials and customer profiles
ALLOWED_EXTENSIONS = [
    ext.strip().lower()
    for ext in os.getenv("ALLOWED_EXTENSIONS", "jpg,jpeg,png,gif,webp").split(",")
    if ext.strip()
]


def allowed_file(filename):
    """Check if the file extension is allowed"""
    return bool(filename) and '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def get_upload_folder():
    folder = current_app.config.get('UPLOAD_FOLDER', 'uploads')
    os.makedirs(folder, exist_ok=True)
    return folder


def save_upload(file, prefix='file'):
    """
    Store an uploaded werkzeug FileStorage under UPLOAD_FOLDER.

    The stored name is `<timestamp>-<prefix>-<secure original name>` so two
    uploads of the same file never collide.

    Returns (file_path, file_name, mimetype), or None if the file is missing
    or its extension is not allowed.
    """
    if file is None or not file.filename or not allowed_file(file.filename):
        return None

    original = secure_filename(file.filename)
    timestamp = datetime.now().strftime('%Y%m%d%H%M%S%f')
    file_name = f"{timestamp}-{secure_filename(prefix)}-{original}"
    file_path = os.path.join(get_upload_folder(), file_name)
    file.save(file_path)
    return file_path, file_name, file.mimetype


def save_uploads(files, prefix='file'):
    """Save every allowed file in a list, skipping the rest."""
    saved = []
    for file in files or []:
        result = save_upload(file, prefix)
        if result:
            saved.append(result)
    return saved


def remove_upload(file_path):
    """Delete a stored upload. Missing files are ignored."""
    if file_path and os.path.exists(file_path):
        os.remove(file_path)
        return True
    return False


def request_payload(request):
    """Fields of a multipart form, or the JSON body when there is no form."""
    if request.form:
        return request.form.to_dict()
    return request.get_json(silent=True) or {}
