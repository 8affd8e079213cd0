"""
WikiNexus - self-hosted wiki with a headless rich-text block editor.
"""

from wikinexus.version_info import __version__
