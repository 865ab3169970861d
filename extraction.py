"""
Client side of the receipt extraction workflow.

The OCR/LLM work happens in an external workflow: we post the receipt image
to its webhook, and it later calls back with the items it found.
"""

import json
import logging
import os

import requests

from errors import ExternalWorkflowError, ValidationError
from validators import parse_amount, parse_name, parse_quantity

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'jpg', 'jpeg', 'png'}
WORKFLOW_CODE = 'API_SPLITBILL_LLMOCR'


def validate_receipt_upload(filename, size, max_size_bytes):
    """Only JPG/PNG receipts under the size limit go to the workflow"""
    extension = os.path.splitext(filename or '')[1].lower().lstrip('.')
    if extension not in ALLOWED_EXTENSIONS:
        raise ValidationError('Invalid file type. Only JPG, PNG, and JPEG are allowed')
    if size > max_size_bytes:
        raise ValidationError(
            f'File size too large. Maximum size is {max_size_bytes // (1024 * 1024)}MB'
        )


def trigger_extraction(bill_id, image_bytes, filename, webhook_url, timeout=30):
    """POST the receipt image to the extraction webhook"""
    if not webhook_url:
        raise ExternalWorkflowError('Extraction webhook URL is not configured')

    try:
        response = requests.post(
            webhook_url,
            data={'bill_id': str(bill_id)},
            files={'image': (filename, image_bytes)},
            timeout=timeout,
        )
    except requests.exceptions.RequestException as exc:
        logger.error("Could not reach extraction workflow for bill %s: %s", bill_id, exc)
        raise ExternalWorkflowError('Failed to reach the extraction workflow') from exc

    if response.status_code != 200:
        logger.error("Extraction workflow returned %s for bill %s: %s",
                     response.status_code, bill_id, response.text[:500])
        raise ExternalWorkflowError(
            f'Extraction workflow failed with status {response.status_code}'
        )

    logger.info("Triggered extraction workflow for bill %s", bill_id)


def _unwrap_payload(payload):
    """The workflow either posts its result directly or as a JSON string"""
    if not isinstance(payload, dict):
        raise ValidationError('Extracted data must be a JSON object')

    if payload.get('code') == WORKFLOW_CODE:
        return payload

    if 'extracted_data' not in payload:
        raise ValidationError('Missing required field: extracted_data')

    extracted = payload['extracted_data']
    if not isinstance(extracted, str):
        raise ValidationError('extracted_data must be a string')
    try:
        data = json.loads(extracted)
    except ValueError as exc:
        raise ValidationError(f'Invalid extracted data: {exc}') from exc
    if not isinstance(data, dict):
        raise ValidationError('Extracted data must be a JSON object')
    return data


def parse_extracted_data(payload):
    """
    Validate a workflow callback and return its items, tax and tip.

    Expected shape:
        {"items": [{"name": str, "price": number >= 0, "quantity": int >= 1}],
         "tax": number >= 0, "tip": number >= 0, "total": number}

    The receipt's own total is dropped; the bill total is always recomputed
    from items, tax and tip.
    """
    data = _unwrap_payload(payload)

    raw_items = data.get('items') or []
    if not isinstance(raw_items, list):
        raise ValidationError('items must be a list')

    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f'items[{index}] must be an object')
        items.append({
            'name': parse_name(raw.get('name'), f'items[{index}].name'),
            'price': parse_amount(raw.get('price'), f'items[{index}].price'),
            'quantity': parse_quantity(raw.get('quantity', 1), f'items[{index}].quantity'),
        })

    return {
        'items': items,
        'tax': parse_amount(data.get('tax') or 0, 'tax'),
        'tip': parse_amount(data.get('tip') or 0, 'tip'),
    }
