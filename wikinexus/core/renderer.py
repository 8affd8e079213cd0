from typing import Any, Dict, List, Optional
import html as html_module
import logging

from wikinexus.features.registry import FeatureManager, FeatureType, Pipeline

logger = logging.getLogger(__name__)

# View rendering: each stored block runs through the feature pipeline, then
# per-request decorations (search highlighting) are applied.


def render_block(content: str, pipeline: Pipeline, decorations=(), highlight: Optional[str] = None) -> str:
    out = pipeline.run(content or '')
    if highlight:
        for feature in decorations:
            try:
                out = feature.handler(out, highlight)
            except Exception as e:
                logger.error(f"Decoration {feature.name} failed: {e}")
    return out


def render_document(document: Dict[str, Any], features: FeatureManager,
                    highlight: Optional[str] = None, enable_experimental: bool = False) -> Dict[str, Any]:
    """
    Render a document payload (as returned by the API) for viewing.
    Every block is wrapped in a container whose id is the block id, so
    ``#page:block`` deep links can scroll to it.
    """
    pipeline = features.build_pipeline(enable_experimental)
    decorations = features.get_features_by_type(FeatureType.VIEW_DECORATION)
    logger.debug(f"Rendering document {document.get('id')} with {len(pipeline)} steps, highlight={highlight!r}")

    blocks: List[Dict[str, Any]] = []
    parts = []
    for block in document.get('blocks') or []:
        block_html = render_block(block.get('content', ''), pipeline, decorations, highlight)
        blocks.append({'id': block['id'], 'html': block_html})
        parts.append(
            f'<div class="content-block" id="{html_module.escape(block["id"], quote=True)}">{block_html}</div>'
        )

    return {
        'id': document.get('id'),
        'title': document.get('title'),
        'highlight': highlight,
        'blocks': blocks,
        'html': '\n'.join(parts),
    }
