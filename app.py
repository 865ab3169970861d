import io
import logging
import os
import uuid
from datetime import datetime, timezone

from flask import Flask, jsonify, request
from PIL import Image, UnidentifiedImageError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from assignment_store import AssignmentStore
from bill_splitting_logic import format_split
from config import get_config
from errors import ExternalWorkflowError, SplitBillError, ValidationError
from extensions import db, migrate
from extraction import parse_extracted_data, trigger_extraction, validate_receipt_upload
from repository import SQLAlchemyBillRepository

app = Flask(__name__)
app.config.from_object(get_config())

logging.basicConfig(
    level=app.config['LOG_LEVEL'],
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)
logger = logging.getLogger(__name__)

# Initialize extensions
db.init_app(app)
migrate.init_app(app, db)

# Create DB tables
with app.app_context():
    db.create_all()

store = AssignmentStore(SQLAlchemyBillRepository())


# --------- Helpers ---------

def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Invalid request: expected a JSON object')
    return data


def _parse_bill_id(bill_id):
    try:
        return str(uuid.UUID(bill_id))
    except ValueError:
        raise ValidationError('Invalid bill ID')


def _require_int(data, key):
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f'{key} is required and must be an integer')
    return value


def _save_receipt_image(bill_id, filename, image_bytes):
    """Keep a JPEG copy of the upload; losing it never blocks extraction"""
    folder = app.config['UPLOAD_FOLDER']
    timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
    stem = os.path.splitext(secure_filename(filename))[0] or 'receipt'
    filepath = os.path.join(folder, f'bill_{bill_id}_{timestamp}_{stem}.jpg')
    try:
        os.makedirs(folder, exist_ok=True)
        Image.open(io.BytesIO(image_bytes)).convert('RGB').save(filepath)
    except OSError as exc:
        logger.warning("Could not save receipt image for bill %s: %s", bill_id, exc)
        return None
    return filepath


# --------- Error handlers ---------

@app.errorhandler(SplitBillError)
def handle_split_bill_error(error):
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(SQLAlchemyError)
def handle_database_error(error):
    db.session.rollback()
    logger.error("Database error: %s", error)
    return jsonify({'error': 'Database error'}), 500


# --------- Routes ---------

@app.route('/health', methods=['GET'])
def health():
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError as exc:
        logger.error("Health check failed: %s", exc)
        return jsonify({'status': 'unhealthy', 'database': 'unreachable'}), 503
    return jsonify({'status': 'ok', 'database': 'ok'}), 200


@app.route('/api/bills', methods=['POST'])
def create_bill():
    data = _json_body()
    bill = store.create_bill(
        data.get('name'),
        tax_amount=data.get('tax_amount', 0),
        tip_amount=data.get('tip_amount', 0),
    )
    return jsonify(bill.to_dict(include_children=True)), 201


@app.route('/api/bills/<bill_id>', methods=['GET'])
def get_bill(bill_id):
    bill = store.get_bill(_parse_bill_id(bill_id))
    return jsonify(bill.to_dict(include_children=True)), 200


@app.route('/api/bills/<bill_id>', methods=['PUT'])
def update_bill(bill_id):
    """Correct the bill's tax and tip"""
    data = _json_body()
    bill = store.update_bill(
        _parse_bill_id(bill_id),
        tax_amount=data.get('tax_amount'),
        tip_amount=data.get('tip_amount'),
        name=data.get('name'),
    )
    return jsonify(bill.to_dict()), 200


@app.route('/api/bills/<bill_id>/status', methods=['GET'])
def get_bill_status(bill_id):
    bill_id = _parse_bill_id(bill_id)
    return jsonify({'bill_id': bill_id, 'status': store.get_status(bill_id)}), 200


@app.route('/api/bills/<bill_id>/image', methods=['POST'])
def upload_bill_image(bill_id):
    """Send a receipt photo to the extraction workflow"""
    bill_id = _parse_bill_id(bill_id)

    if 'image' not in request.files:
        return jsonify({'error': 'No image file provided'}), 400

    file = request.files['image']
    if file.filename == '':
        return jsonify({'error': 'No file selected'}), 400

    image_bytes = file.read()
    validate_receipt_upload(file.filename, len(image_bytes), app.config['MAX_IMAGE_SIZE_BYTES'])
    store.get_bill(bill_id)

    try:
        Image.open(io.BytesIO(image_bytes)).verify()
    except (UnidentifiedImageError, OSError):
        return jsonify({'error': 'Uploaded file is not a valid image'}), 400

    store.set_status(bill_id, 'processing')

    try:
        if app.config['SAVE_UPLOADED_IMAGES']:
            _save_receipt_image(bill_id, file.filename, image_bytes)
        trigger_extraction(
            bill_id,
            image_bytes,
            file.filename,
            app.config['EXTRACTION_WEBHOOK_URL'],
            timeout=app.config['EXTRACTION_TIMEOUT_SECONDS'],
        )
    except ExternalWorkflowError as exc:
        store.set_status(bill_id, 'failed')
        return jsonify({
            'error': 'Failed to process image with AI. Please try uploading again.',
            'status': 'failed',
            'details': exc.message,
        }), exc.status_code
    except Exception:
        # Anything else is our failure, not the workflow's
        store.set_status(bill_id, 'pending')
        raise

    return jsonify({
        'message': 'Image uploaded successfully and sent for processing',
        'bill': store.get_bill(bill_id).to_dict(include_children=True),
        'status': 'processing',
    }), 200


@app.route('/api/bills/<bill_id>/process-data', methods=['POST'])
def process_extracted_data(bill_id):
    """Callback from the extraction workflow with the receipt's items"""
    bill_id = _parse_bill_id(bill_id)
    store.get_bill(bill_id)

    try:
        extracted = parse_extracted_data(request.get_json(silent=True))
        store.ingest_extracted_data(bill_id, extracted)
    except (SplitBillError, SQLAlchemyError) as exc:
        logger.warning("Extraction result for bill %s rejected: %s", bill_id, exc)
        store.set_status(bill_id, 'failed')
        raise

    return jsonify({'message': 'Extracted data processed successfully'}), 200


@app.route('/api/bills/<bill_id>/summary', methods=['GET'])
def get_bill_summary(bill_id):
    """Per-participant totals, recomputed from the bill's current state"""
    result = store.summarize(_parse_bill_id(bill_id))
    return jsonify(format_split(result)), 200


@app.route('/api/bills/<bill_id>/participants', methods=['GET'])
def get_participants(bill_id):
    participants = store.list_participants(_parse_bill_id(bill_id))
    return jsonify([p.to_dict() for p in participants]), 200


@app.route('/api/bills/<bill_id>/participants', methods=['POST'])
def add_participant(bill_id):
    data = _json_body()
    participant = store.add_participant(
        _parse_bill_id(bill_id),
        data.get('name'),
        share_of_common_costs=data.get('share_of_common_costs', 0),
    )
    return jsonify(participant.to_dict()), 201


@app.route('/api/bills/<bill_id>/participants/<int:participant_id>', methods=['DELETE'])
def delete_participant(bill_id, participant_id):
    store.remove_participant(_parse_bill_id(bill_id), participant_id)
    return jsonify({'message': 'Participant deleted successfully'}), 200


@app.route('/api/bills/<bill_id>/item-assignments', methods=['GET'])
def get_item_assignments(bill_id):
    assignments = store.list_assignments(_parse_bill_id(bill_id))
    return jsonify([a.to_dict() for a in assignments]), 200


@app.route('/api/bills/<bill_id>/assign-items', methods=['POST'])
def assign_item_to_participant(bill_id):
    data = _json_body()
    assignment = store.add_assignment(
        _parse_bill_id(bill_id),
        _require_int(data, 'item_id'),
        _require_int(data, 'participant_id'),
    )
    return jsonify(assignment.to_dict()), 201


@app.route('/api/bills/<bill_id>/assign-items', methods=['DELETE'])
def delete_item_assignment(bill_id):
    data = _json_body()
    store.remove_assignment(
        _parse_bill_id(bill_id),
        _require_int(data, 'item_id'),
        _require_int(data, 'participant_id'),
    )
    return jsonify({'message': 'Item assignment removed successfully'}), 200


@app.route('/api/items/<int:item_id>', methods=['PUT'])
def update_item(item_id):
    """Correct an extracted item's name, price or quantity"""
    data = _json_body()
    item = store.update_item(
        item_id,
        name=data.get('name'),
        price=data.get('price'),
        quantity=data.get('quantity'),
    )
    return jsonify(item.to_dict()), 200


# Run the app
if __name__ == "__main__":
    app.run(debug=app.config['APP_ENV'] == 'development', host='0.0.0.0', port=5000)
