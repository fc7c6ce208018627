"""
API blueprints
"""
from .sync import sync_bp
from .jobs import jobs_bp
from .channels import channels_bp

__all__ = ['sync_bp', 'jobs_bp', 'channels_bp']
