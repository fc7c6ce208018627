"""
Channel API

Registration for periodic sync plus read-only views of mirrored data.
"""
from flask import Blueprint, request

from ..middleware.auth import require_auth
from ..models import Channel, Comment, Video
from ..services import get_services
from ..services.sync.errors import StoreError
from ..utils.logger import get_logger
from ..utils.responses import ApiResponse, success_response
from ..utils.validators import parse_bool, sanitize_string, validate_channel_id, validate_interval

channels_bp = Blueprint('channels', __name__)
logger = get_logger('channels_api')


def _pagination():
    page = max(1, request.args.get('page', 1, type=int))
    per_page = max(1, min(request.args.get('per_page', 20, type=int), 100))
    return page, per_page


def _paged(query, page, per_page):
    total = query.count()
    items = query.offset((page - 1) * per_page).limit(per_page).all()
    return {
        'items': [item.to_dict() for item in items],
        'total': total,
        'page': page,
        'per_page': per_page,
    }


@channels_bp.route('/channels', methods=['GET'])
def list_channels():
    channels = Channel.query.order_by(Channel.id.desc()).all()
    return success_response([c.to_dict() for c in channels], f'{len(channels)} channels')


@channels_bp.route('/channels', methods=['POST'])
@require_auth
def register_channel():
    """
    Register a channel for periodic sync

    Request Body:
        - channel_id: upstream channel id (required)
        - interval: seconds between full syncs (default PERIODIC_SYNC_INTERVAL)
        - credential_ref: credential to sync with
        - sync_now: also queue a full sync right away
    """
    data = request.get_json(silent=True) or {}

    channel_id = sanitize_string(data.get('channel_id'), 128)
    is_valid, error_msg = validate_channel_id(channel_id)
    if not is_valid:
        return ApiResponse.validation_error(error_msg)

    is_valid, error_msg, interval = validate_interval(data.get('interval'))
    if not is_valid:
        return ApiResponse.validation_error(error_msg)

    credential_ref = sanitize_string(data.get('credential_ref'), 64) or None
    services = get_services()

    try:
        channel = services.scheduler.register(channel_id, interval=interval, credential_ref=credential_ref)
    except StoreError as e:
        logger.error(f"Failed to register channel {channel_id}: {e}")
        return ApiResponse.server_error('Failed to register channel')

    result = channel.to_dict()
    if parse_bool(data.get('sync_now')):
        job, _ = services.queue.enqueue(channel_id, 'full')
        result['jobId'] = job.id

    return ApiResponse.created(result, 'Channel registered')


@channels_bp.route('/channels/<channel_id>/schedule', methods=['DELETE'])
@require_auth
def unregister_channel(channel_id):
    """Stop periodic syncs; mirrored data is kept."""
    if not get_services().scheduler.unregister(channel_id):
        return ApiResponse.not_found('Channel not found')
    return success_response(message='Periodic sync disabled')


@channels_bp.route('/channels/<channel_id>', methods=['GET'])
def get_channel(channel_id):
    channel = Channel.query.filter_by(channel_id=channel_id).first()
    if not channel:
        return ApiResponse.not_found('Channel not found')
    data = channel.to_dict()
    data['stored_videos'] = Video.query.filter_by(channel_id=channel_id).count()
    return success_response(data)


@channels_bp.route('/channels/<channel_id>/videos', methods=['GET'])
def list_channel_videos(channel_id):
    if not Channel.query.filter_by(channel_id=channel_id).first():
        return ApiResponse.not_found('Channel not found')
    page, per_page = _pagination()
    query = Video.query.filter_by(channel_id=channel_id).order_by(
        Video.published_at.desc(), Video.id.desc()
    )
    return success_response(_paged(query, page, per_page))


@channels_bp.route('/videos/<video_id>/comments', methods=['GET'])
def list_video_comments(video_id):
    page, per_page = _pagination()
    query = Comment.query.filter_by(video_id=video_id).order_by(
        Comment.published_at.desc(), Comment.id.desc()
    )
    return success_response(_paged(query, page, per_page))
