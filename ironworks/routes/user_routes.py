from flask import Blueprint, request, jsonify, current_app
import os
import re

from ..models import Customer, Quotation
from ..db import SessionLocal
from ..utils.file_utils import save_upload, remove_upload, get_upload_folder
from .auth_helpers import token_required

user_bp = Blueprint('user', __name__)

MIN_PASSWORD_LENGTH = 8
PHONE_LENGTH = 10

# --- Helpers ---

def validate_email(email):
    """Validate email format"""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email) is not None


def validate_phone(tel_num):
    return len(str(tel_num or '').strip()) == PHONE_LENGTH


def _issue_token(customer):
    return customer.generate_jwt_token(
        current_app.config['SECRET_KEY'],
        expires_in_days=current_app.config.get('TOKEN_EXPIRY_DAYS', 7)
    )


def _auth_response(customer, token):
    return {
        'success': True,
        'token': token,
        'userId': customer.id,
        'name': customer.customer_name,
        'phone': customer.tel_num,
    }


# --- Routes ---

@user_bp.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    email = (data.get('email') or '').lower().strip()
    password = data.get('password') or ''
    tel_num = str(data.get('tel_num') or '').strip()

    if not name or not email or not password or not tel_num:
        return jsonify({'success': False, 'message': 'Missing details'}), 400
    if not validate_email(email):
        return jsonify({'success': False, 'message': 'Please enter a valid email'}), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({'success': False, 'message': 'Please enter a strong password'}), 400
    if not validate_phone(tel_num):
        return jsonify({'success': False, 'message': 'Please enter a valid phone number'}), 400

    session = SessionLocal()
    try:
        if session.query(Customer.id).filter(Customer.email == email).first():
            return jsonify({'success': False, 'message': 'Email already exists'}), 400

        customer = Customer(customer_name=name, email=email, tel_num=tel_num)
        customer.set_password(password)
        session.add(customer)
        session.commit()

        current_app.logger.info(f"✅ Customer registered: {email}")
        return jsonify(_auth_response(customer, _issue_token(customer))), 201
    except Exception as e:
        session.rollback()
        current_app.logger.error(f"❌ Registration error: {e}")
        return jsonify({'success': False, 'message': f"Registration failed: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@user_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').lower().strip()
    password = data.get('password') or ''

    if not email or not password:
        return jsonify({'success': False, 'message': 'Email and password are required'}), 400

    session = SessionLocal()
    try:
        customer = session.query(Customer).filter(Customer.email == email).first()
        if not customer or not customer.check_password(password):
            current_app.logger.warning(f"❌ Login failed for: {email}")
            return jsonify({'success': False, 'message': 'Invalid email or password'}), 401

        current_app.logger.info(f"✅ Login successful: {email}")
        return jsonify(_auth_response(customer, _issue_token(customer))), 200
    except Exception as e:
        current_app.logger.error(f"❌ Login error: {e}")
        return jsonify({'success': False, 'message': f"Login failed: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@user_bp.route('/get_users', methods=['GET'])
def get_users():
    session = SessionLocal()
    try:
        customers = session.query(Customer).order_by(Customer.id.desc()).all()
        return jsonify({'success': True, 'users': [c.to_dict() for c in customers]}), 200
    except Exception as e:
        current_app.logger.exception(f"❌ Error fetching users: {e}")
        return jsonify({'success': False, 'message': f"Error fetching users: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@user_bp.route('/get_user', methods=['GET'])
@token_required
def get_user():
    return jsonify({'success': True, 'user': request.current_user.to_dict()}), 200


@user_bp.route('/update_info', methods=['POST'])
@token_required
def update_info():
    data = request.get_json(silent=True) or {}
    customer_name = (data.get('customer_name') or '').strip()
    tel_num = str(data.get('tel_num') or '').strip()

    if not customer_name or not tel_num:
        return jsonify({'success': False, 'message': 'Name and phone number are required'}), 400
    if not validate_phone(tel_num):
        return jsonify({'success': False, 'message': 'Please enter a valid phone number'}), 400

    session = SessionLocal()
    try:
        customer = session.get(Customer, request.current_user.id)
        if not customer:
            return jsonify({'success': False, 'message': 'User not found'}), 404

        customer.customer_name = customer_name
        customer.tel_num = tel_num
        session.commit()
        return jsonify({
            'success': True,
            'message': 'Profile updated successfully',
            'user': customer.to_dict()
        }), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error updating profile: {e}")
        return jsonify({'success': False, 'message': f"Error updating profile: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@user_bp.route('/change_password', methods=['POST'])
@token_required
def change_password():
    data = request.get_json(silent=True) or {}
    current_password = data.get('currentPassword') or ''
    new_password = data.get('newPassword') or ''

    if not current_password or not new_password:
        return jsonify({'success': False, 'message': 'All fields are required'}), 400
    if len(new_password) < MIN_PASSWORD_LENGTH:
        return jsonify({'success': False, 'message': 'Please enter a strong password'}), 400

    session = SessionLocal()
    try:
        customer = session.get(Customer, request.current_user.id)
        if not customer:
            return jsonify({'success': False, 'message': 'User not found'}), 404
        if not customer.check_password(current_password):
            return jsonify({'success': False, 'message': 'Current password is incorrect'}), 400

        customer.set_password(new_password)
        session.commit()
        current_app.logger.info(f"🔑 Password changed for customer #{customer.id}")
        return jsonify({'success': True, 'message': 'Password changed successfully'}), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error changing password: {e}")
        return jsonify({'success': False, 'message': f"Error changing password: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@user_bp.route('/update', methods=['POST'])
@token_required
def update_profile():
    """Multipart profile update: any of profile_image, customer_name, tel_num."""
    upload = request.files.get('profile_image')
    customer_name = (request.form.get('customer_name') or '').strip()
    tel_num = (request.form.get('tel_num') or '').strip()

    if not upload and not customer_name and not tel_num:
        return jsonify({'success': False, 'message': 'No data provided for update'}), 400
    if tel_num and not validate_phone(tel_num):
        return jsonify({'success': False, 'message': 'Please enter a valid phone number'}), 400

    saved = None
    previous_image = None
    session = SessionLocal()
    try:
        customer = session.get(Customer, request.current_user.id)
        if not customer:
            return jsonify({'success': False, 'message': 'User not found'}), 404

        if upload:
            saved = save_upload(upload, prefix='customer')
            if not saved:
                return jsonify({'success': False, 'message': 'File type not allowed'}), 400
            previous_image = customer.profile_image
            customer.profile_image = saved[1]
        if customer_name:
            customer.customer_name = customer_name
        if tel_num:
            customer.tel_num = tel_num

        session.commit()
        saved = None
        if previous_image and previous_image != customer.profile_image:
            remove_upload(os.path.join(get_upload_folder(), previous_image))
        return jsonify({
            'success': True,
            'message': 'Profile updated successfully',
            'user': customer.to_dict()
        }), 200
    except Exception as e:
        session.rollback()
        if saved:
            remove_upload(saved[0])
        current_app.logger.exception(f"❌ Error updating profile: {e}")
        return jsonify({'success': False, 'message': f"Error updating profile: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@user_bp.route('/delete', methods=['POST'])
@token_required
def delete_account():
    session = SessionLocal()
    try:
        customer = session.get(Customer, request.current_user.id)
        if not customer:
            return jsonify({'success': False, 'message': 'User not found'}), 404

        if session.query(Quotation.id).filter(Quotation.customer_id == customer.id).first():
            return jsonify({
                'success': False,
                'message': 'Accounts with quotations on file cannot be deleted'
            }), 400

        image_name = customer.profile_image
        session.delete(customer)
        session.commit()

        if image_name:
            remove_upload(os.path.join(get_upload_folder(), image_name))
        current_app.logger.info(f"🗑️ Customer #{request.current_user.id} deleted")
        return jsonify({'success': True, 'message': 'Account deleted successfully'}), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error deleting account: {e}")
        return jsonify({'success': False, 'message': f"Error deleting account: {e}", 'error': str(e)}), 500
    finally:
        session.close()
