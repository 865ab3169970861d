import io
import json
from decimal import Decimal

import pytest
import requests
from PIL import Image

from errors import ExternalWorkflowError, ValidationError
from extraction import parse_extracted_data, trigger_extraction, validate_receipt_upload


def create_test_image(format="JPEG"):
    """Return an in-memory image file."""
    img = Image.new('RGB', (100, 100), color='white')
    img_bytes = io.BytesIO()
    img.save(img_bytes, format=format)
    img_bytes.seek(0)
    return img_bytes


@pytest.fixture
def bill_id(client):
    return client.post("/api/bills", json={"name": "Receipt"}).json["id"]


# 1. Missing file test
def test_no_file_provided(client, bill_id):
    response = client.post(f'/api/bills/{bill_id}/image')

    assert response.status_code == 400
    assert response.get_json()['error'] == 'No image file provided'


# 2. Empty filename test
def test_empty_filename(client, bill_id):
    data = {
        'image': (io.BytesIO(b''), '')
    }
    response = client.post(f'/api/bills/{bill_id}/image', data=data)

    assert response.status_code == 400
    assert response.get_json()['error'] == 'No file selected'


# 3. Unsupported file type
def test_unsupported_file_type(client, bill_id):
    data = {
        'image': (io.BytesIO(b'not an image'), 'test.txt')
    }
    response = client.post(f'/api/bills/{bill_id}/image', data=data)

    assert response.status_code == 400
    assert "Invalid file type" in response.get_json()['error']


def test_corrupt_image(client, bill_id, mock_trigger_extraction):
    data = {
        'image': (io.BytesIO(b'definitely not a jpeg'), 'receipt.jpg')
    }
    response = client.post(f'/api/bills/{bill_id}/image', data=data)

    assert response.status_code == 400
    mock_trigger_extraction.assert_not_called()
    assert client.get(f'/api/bills/{bill_id}/status').json['status'] == 'pending'


def test_valid_image(client, bill_id, mock_trigger_extraction):
    data = {
        'image': (create_test_image("JPEG"), 'receipt.jpg')
    }
    response = client.post(
        f'/api/bills/{bill_id}/image',
        data=data,
        content_type='multipart/form-data'
    )

    json_data = response.get_json()
    assert response.status_code == 200
    assert json_data['status'] == 'processing'
    assert json_data['bill']['id'] == bill_id
    assert client.get(f'/api/bills/{bill_id}/status').json['status'] == 'processing'

    mock_trigger_extraction.assert_called_once()
    args, kwargs = mock_trigger_extraction.call_args
    assert args[0] == bill_id
    assert args[2] == 'receipt.jpg'
    assert args[3] == 'http://extraction.test/webhook'


def test_workflow_failure_marks_bill_failed(client, bill_id, mocker):
    mocker.patch('app.trigger_extraction',
                 side_effect=ExternalWorkflowError('Extraction workflow failed with status 500'))

    response = client.post(f'/api/bills/{bill_id}/image', data={
        'image': (create_test_image("PNG"), 'receipt.png')
    })

    assert response.status_code == 502
    assert response.get_json()['status'] == 'failed'
    assert client.get(f'/api/bills/{bill_id}/status').json['status'] == 'failed'


def test_upload_to_unknown_bill(client, mock_trigger_extraction):
    response = client.post('/api/bills/00000000-0000-0000-0000-000000000000/image', data={
        'image': (create_test_image("JPEG"), 'receipt.jpg')
    })

    assert response.status_code == 404
    mock_trigger_extraction.assert_not_called()


def test_process_data_completes_bill(client, bill_id):
    extracted = {
        "items": [
            {"name": "Burger", "price": 11.5, "quantity": 2},
            {"name": "Fries", "price": 4, "quantity": 1},
        ],
        "tax": 2.7,
        "tip": 4,
        "total": 33.7,
    }
    response = client.post(f'/api/bills/{bill_id}/process-data',
                           json={"extracted_data": json.dumps(extracted)})

    assert response.status_code == 200
    bill = client.get(f'/api/bills/{bill_id}').json
    assert bill['status'] == 'completed'
    assert bill['tax_amount'] == 2.7
    assert bill['tip_amount'] == 4.0
    assert [(i['name'], i['price'], i['quantity']) for i in bill['items']] == [
        ('Burger', 11.5, 2),
        ('Fries', 4.0, 1),
    ]

    summary = client.get(f'/api/bills/{bill_id}/summary').json['summary']
    assert summary['bill_items_total'] == 27.0
    assert summary['bill_total'] == 33.7


def test_process_data_missing_field_marks_failed(client, bill_id):
    response = client.post(f'/api/bills/{bill_id}/process-data', json={"something": "else"})

    assert response.status_code == 400
    assert response.get_json()['error'] == 'Missing required field: extracted_data'
    assert client.get(f'/api/bills/{bill_id}/status').json['status'] == 'failed'


def test_process_data_bad_item_leaves_no_items(client, bill_id):
    response = client.post(f'/api/bills/{bill_id}/process-data', json={
        "code": "API_SPLITBILL_LLMOCR",
        "items": [
            {"name": "Burger", "price": 11.5, "quantity": 1},
            {"name": "Mystery", "price": 3, "quantity": 0},
        ],
        "tax": 0,
        "tip": 0,
    })

    assert response.status_code == 400
    bill = client.get(f'/api/bills/{bill_id}').json
    assert bill['status'] == 'failed'
    assert bill['items'] == []


def test_parse_extracted_data_direct_payload():
    data = parse_extracted_data({
        "code": "API_SPLITBILL_LLMOCR",
        "items": [{"name": " Latte ", "price": 4.2, "quantity": 3}],
        "tax": 0.5,
        "tip": None,
        "total": 99,
    })

    assert data == {
        "items": [{"name": "Latte", "price": Decimal("4.2"), "quantity": 3}],
        "tax": Decimal("0.5"),
        "tip": Decimal("0"),
    }


@pytest.mark.parametrize("payload", [
    None,
    {"extracted_data": {"items": []}},
    {"extracted_data": "{not json"},
    {"extracted_data": json.dumps({"items": [{"name": "", "price": 1, "quantity": 1}]})},
    {"extracted_data": json.dumps({"items": [{"name": "x", "price": -1, "quantity": 1}]})},
    {"extracted_data": json.dumps({"items": [], "tax": -2})},
    {"extracted_data": json.dumps({"items": "nope"})},
])
def test_parse_extracted_data_rejects(payload):
    with pytest.raises(ValidationError):
        parse_extracted_data(payload)


def test_validate_receipt_upload_size_limit():
    with pytest.raises(ValidationError):
        validate_receipt_upload("receipt.png", 11 * 1024 * 1024, 10 * 1024 * 1024)
    validate_receipt_upload("receipt.JPG", 1024, 10 * 1024 * 1024)


def test_trigger_extraction_posts_image(mocker):
    post = mocker.patch('extraction.requests.post')
    post.return_value.status_code = 200

    trigger_extraction("bill-1", b"bytes", "receipt.jpg", "http://hook", timeout=5)

    post.assert_called_once_with(
        "http://hook",
        data={'bill_id': 'bill-1'},
        files={'image': ('receipt.jpg', b"bytes")},
        timeout=5,
    )


def test_trigger_extraction_non_200(mocker):
    post = mocker.patch('extraction.requests.post')
    post.return_value.status_code = 500
    post.return_value.text = "workflow exploded"

    with pytest.raises(ExternalWorkflowError):
        trigger_extraction("bill-1", b"bytes", "receipt.jpg", "http://hook")


def test_trigger_extraction_connection_error(mocker):
    mocker.patch('extraction.requests.post', side_effect=requests.exceptions.ConnectionError("down"))

    with pytest.raises(ExternalWorkflowError):
        trigger_extraction("bill-1", b"bytes", "receipt.jpg", "http://hook")


def test_trigger_extraction_without_url():
    with pytest.raises(ExternalWorkflowError):
        trigger_extraction("bill-1", b"bytes", "receipt.jpg", "")
