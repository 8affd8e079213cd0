"""
Standard block rendering features.
"""

import logging
import re

from wikinexus.editor.navigation import highlight_search_term, linkify
from wikinexus.editor.tree import parse_fragment, serialize
from wikinexus.features.registry import Feature, FeatureManager, FeatureState, FeatureType

logger = logging.getLogger(__name__)

HEADING_TAGS = ('h1', 'h2', 'h3', 'h4', 'h5', 'h6')


def slugify(text: str) -> str:
    slug = re.sub(r'[^\w\s-]', '', text.lower()).strip()
    return re.sub(r'[\s_-]+', '-', slug)


def anchor_headings(html: str) -> str:
    """Give headings without an id a slug id (unique within the block)."""
    if not html:
        return html or ''
    soup = parse_fragment(html)
    seen = {tag['id'] for tag in soup.find_all(id=True)}
    for heading in soup.find_all(HEADING_TAGS):
        if heading.get('id'):
            continue
        base = slugify(heading.get_text()) or 'section'
        slug = base
        counter = 1
        while slug in seen:
            counter += 1
            slug = f"{base}-{counter}"
        seen.add(slug)
        heading['id'] = slug
    return serialize(soup)


def register_standard_features(manager: FeatureManager) -> FeatureManager:
    manager.register(Feature("STD_LINKIFY", linkify, FeatureState.STANDARD))
    manager.register(Feature("STD_HEADING_ANCHORS", anchor_headings, FeatureState.STANDARD))
    manager.register(Feature("STD_SEARCH_HIGHLIGHT", highlight_search_term, FeatureState.STANDARD,
                             FeatureType.VIEW_DECORATION))
    return manager
