from decimal import InvalidOperation
from flask import Blueprint, request, jsonify, current_app

from ..models import Material, MaterialImage, QuotationMaterial, InvoiceItem, to_decimal
from ..db import SessionLocal
from ..utils.date_utils import normalize_id
from ..utils.file_utils import save_uploads, remove_upload, request_payload

material_bp = Blueprint('material', __name__)


def _non_negative(value):
    """Decimal >= 0, or None for anything else."""
    try:
        number = to_decimal(value)
    except (InvalidOperation, ValueError):
        return None
    if number is None or not number.is_finite() or number < 0:
        return None
    return number


@material_bp.route('/add', methods=['POST'])
def add_material():
    data = request_payload(request)
    item_name = (data.get('itemName') or '').strip()

    if not item_name or data.get('availableQty') in (None, '') or data.get('unitPrice') in (None, ''):
        return jsonify({'success': False, 'message': 'Material name, quantity, and price are required.'}), 400

    available_qty = _non_negative(data.get('availableQty'))
    unit_price = _non_negative(data.get('unitPrice'))
    if available_qty is None or unit_price is None:
        return jsonify({'success': False, 'message': 'Quantity and price must be non-negative numbers.'}), 400

    session = SessionLocal()
    try:
        material = Material(item_name=item_name, available_qty=available_qty, unit_price=unit_price)
        for file_path, file_name, mimetype in save_uploads(request.files.getlist('images'), prefix='material'):
            material.images.append(MaterialImage(file_path=file_path, file_name=file_name, file_type=mimetype))

        session.add(material)
        session.commit()
        current_app.logger.info(f"✅ Material added: {material.item_name} qty={available_qty}")

        return jsonify({
            'success': True,
            'message': 'Material added successfully!',
            'material': material.to_dict(include_images=True)
        }), 201
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error adding material: {e}")
        return jsonify({'success': False, 'message': f"Error adding material: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@material_bp.route('/get', methods=['GET'])
def get_materials():
    session = SessionLocal()
    try:
        materials = session.query(Material).order_by(Material.item_name).all()
        return jsonify({'success': True, 'materials': [m.to_dict() for m in materials]}), 200
    except Exception as e:
        current_app.logger.exception(f"❌ Error fetching materials: {e}")
        return jsonify({'success': False, 'message': f"Error fetching materials: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@material_bp.route('/get_all', methods=['GET'])
def get_all_materials():
    session = SessionLocal()
    try:
        materials = session.query(Material).order_by(Material.item_name).all()
        return jsonify({
            'success': True,
            'materials': [m.to_dict(include_images=True) for m in materials]
        }), 200
    except Exception as e:
        current_app.logger.exception(f"❌ Error fetching materials with images: {e}")
        return jsonify({'success': False, 'message': f"Error fetching materials: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@material_bp.route('/get_one/<material_id>', methods=['GET'])
def get_material(material_id):
    material_id = normalize_id(material_id)
    session = SessionLocal()
    try:
        material = session.get(Material, material_id) if material_id else None
        if not material:
            return jsonify({'success': False, 'message': 'Material not found.'}), 404
        return jsonify({'success': True, 'material': material.to_dict(include_images=True)}), 200
    except Exception as e:
        current_app.logger.exception(f"❌ Error fetching material {material_id}: {e}")
        return jsonify({'success': False, 'message': f"Error fetching material: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@material_bp.route('/update', methods=['PUT'])
def update_material():
    data = request.get_json(silent=True) or {}
    material_id = normalize_id(data.get('id'))

    if not material_id or data.get('availableQty') in (None, '') or data.get('unitPrice') in (None, ''):
        return jsonify({'success': False, 'message': 'Material ID, quantity, and price are required.'}), 400

    available_qty = _non_negative(data.get('availableQty'))
    unit_price = _non_negative(data.get('unitPrice'))
    if available_qty is None or unit_price is None:
        return jsonify({'success': False, 'message': 'Quantity and price must be non-negative numbers.'}), 400

    session = SessionLocal()
    try:
        material = session.get(Material, material_id)
        if not material:
            return jsonify({'success': False, 'message': 'Material not found.'}), 404

        material.available_qty = available_qty
        material.unit_price = unit_price
        session.commit()
        return jsonify({
            'success': True,
            'message': 'Material updated successfully!',
            'material': material.to_dict()
        }), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error updating material {material_id}: {e}")
        return jsonify({'success': False, 'message': f"Error updating material: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@material_bp.route('/update_all', methods=['PUT'])
def update_material_details():
    """Partial update: any of itemName, availableQty, unitPrice."""
    data = request.get_json(silent=True) or {}
    material_id = normalize_id(data.get('id'))
    if not material_id:
        return jsonify({'success': False, 'message': 'Material ID is required.'}), 400

    updates = {}
    if data.get('itemName'):
        updates['item_name'] = str(data['itemName']).strip()
    for key, column in (('availableQty', 'available_qty'), ('unitPrice', 'unit_price')):
        if data.get(key) not in (None, ''):
            value = _non_negative(data.get(key))
            if value is None:
                return jsonify({'success': False, 'message': 'Quantity and price must be non-negative numbers.'}), 400
            updates[column] = value

    if not updates:
        return jsonify({'success': False, 'message': 'No fields provided for update.'}), 400

    session = SessionLocal()
    try:
        material = session.get(Material, material_id)
        if not material:
            return jsonify({'success': False, 'message': 'Material not found.'}), 404

        for column, value in updates.items():
            setattr(material, column, value)
        session.commit()
        return jsonify({
            'success': True,
            'message': 'Material updated successfully!',
            'material': material.to_dict()
        }), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error updating material {material_id}: {e}")
        return jsonify({'success': False, 'message': f"Error updating material: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@material_bp.route('/update_quantity', methods=['PUT'])
def update_material_quantity():
    data = request.get_json(silent=True) or {}
    material_id = normalize_id(data.get('id'))

    if not material_id or data.get('availableQty') in (None, ''):
        return jsonify({'success': False, 'message': 'Material ID and quantity are required.'}), 400

    available_qty = _non_negative(data.get('availableQty'))
    if available_qty is None:
        return jsonify({'success': False, 'message': 'Quantity must be a non-negative number.'}), 400

    session = SessionLocal()
    try:
        material = session.get(Material, material_id)
        if not material:
            return jsonify({'success': False, 'message': 'Material not found.'}), 404

        material.available_qty = available_qty
        session.commit()
        current_app.logger.info(f"Material #{material_id} quantity set to {available_qty}")
        return jsonify({
            'success': True,
            'message': 'Material quantity updated successfully!',
            'material': material.to_dict()
        }), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error updating quantity for material {material_id}: {e}")
        return jsonify({'success': False, 'message': f"Error updating material quantity: {e}", 'error': str(e)}), 500
    finally:
        session.close()


@material_bp.route('/delete', methods=['DELETE'])
def delete_material():
    data = request.get_json(silent=True) or {}
    material_id = normalize_id(data.get('id'))
    if not material_id:
        return jsonify({'success': False, 'message': 'Material ID is required.'}), 400

    session = SessionLocal()
    try:
        material = session.get(Material, material_id)
        if not material:
            return jsonify({'success': False, 'message': 'Material not found.'}), 404

        image_paths = [img.file_path for img in material.images]
        # quotation and invoice lines keep their name and price snapshot
        for line_model in (QuotationMaterial, InvoiceItem):
            session.query(line_model).filter(line_model.material_id == material_id).update(
                {line_model.material_id: None}, synchronize_session=False
            )
        session.delete(material)
        session.commit()

        for path in image_paths:
            remove_upload(path)
        current_app.logger.info(f"🗑️ Material #{material_id} deleted")
        return jsonify({'success': True, 'message': 'Material deleted successfully!'}), 200
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"❌ Error deleting material {material_id}: {e}")
        return jsonify({'success': False, 'message': f"Error deleting material: {e}", 'error': str(e)}), 500
    finally:
        session.close()
