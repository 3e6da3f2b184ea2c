# routes/deal_documents/helpers.py
"""
Helper functions for deal document routes.
"""

from io import BytesIO
from flask import jsonify, request, send_file


def get_json_body():
    """Request JSON object, or {} for an empty or non-object body."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def as_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes', 'on')


def download_response(result):
    """Signed URL as JSON, or the stored bytes as an attachment."""
    if result.get('url'):
        return jsonify({'success': True, 'url': result['url']})

    return send_file(
        BytesIO(result['buffer']),
        mimetype=result['content_type'],
        as_attachment=True,
        download_name=result['file_name']
    )
