from enum import Enum, auto
from typing import Callable, List, Optional, Any, Dict
import logging

logger = logging.getLogger(__name__)

class FeatureState(Enum):
    STANDARD = auto()
    EXPERIMENTAL = auto()

class FeatureType(Enum):
    ALGORITHM = auto() # Block content transformation (HTML -> HTML)
    VIEW_DECORATION = auto() # Per-request decoration such as search highlighting

class Feature:
    def __init__(self, name: str, handler: Callable[..., str], state: FeatureState, feature_type: FeatureType = FeatureType.ALGORITHM, meta: Dict = None):
        self.name = name
        self.handler = handler
        self.state = state
        self.type = feature_type
        self.meta = meta or {}

    def __repr__(self):
        return f"<Feature {self.name} ({self.state.name})>"

class Pipeline:
    """
    A sequence of block transformations (Features) executed in order.
    """
    def __init__(self, name: str):
        self.name = name
        self._steps: List[Callable[[str], str]] = []

    def add_step(self, handler: Callable[[str], str]):
        self._steps.append(handler)

    def run(self, content: str) -> str:
        """Execute the pipeline on the content."""
        for step in self._steps:
            try:
                content = step(content)
            except Exception as e:
                # Log and continue with the partial content
                logger.error(f"Pipeline {self.name} step {getattr(step, '__name__', 'unknown')} failed: {e}")
        return content

    def __iter__(self):
        return iter(self._steps)

    def __len__(self):
        return len(self._steps)

class FeatureManager:
    """
    Holds the registered features and builds Pipelines from them.
    """
    def __init__(self):
        self._features: List[Feature] = []

    def register(self, feature: Feature):
        """Register a feature. A feature with the same name is replaced."""
        existing_idx = next((i for i, f in enumerate(self._features) if f.name == feature.name), -1)
        if existing_idx >= 0:
            self._features[existing_idx] = feature
            logger.warning(f"FeatureManager: Overwrote existing feature '{feature.name}' (State: {feature.state})")
        else:
            self._features.append(feature)
            logger.debug(f"FeatureManager: Registered feature {feature.name}")

    def get(self, name: str) -> Optional[Feature]:
        return next((f for f in self._features if f.name == name), None)

    def set_enabled(self, name: str, enabled: bool) -> bool:
        """Toggle a feature on or off. Returns False for unknown features."""
        feature = self.get(name)
        if feature is None:
            return False
        feature.meta['installed'] = enabled
        logger.info(f"FeatureManager: {'Enabled' if enabled else 'Disabled'} feature {name}")
        return True

    def is_feature_installed(self, feature: Feature) -> bool:
        installed = feature.meta.get('installed', True)
        if not installed:
            logger.debug(f"FeatureManager: Skipping disabled feature '{feature.name}'")
        return installed

    def build_pipeline(self, enable_experimental: bool = False) -> Pipeline:
        """
        Build the block rendering pipeline.
        Steps run in registration order.
        """
        pipeline = Pipeline("BlockPipeline")

        for f in self._features:
            if f.type != FeatureType.ALGORITHM:
                continue
            if not self.is_feature_installed(f):
                continue

            if f.state == FeatureState.STANDARD:
                pipeline.add_step(f.handler)
            elif enable_experimental and f.state == FeatureState.EXPERIMENTAL:
                pipeline.add_step(f.handler)

        return pipeline

    def get_features_by_type(self, feature_type: FeatureType) -> List[Feature]:
        features = [f for f in self._features if f.type == feature_type and self.is_feature_installed(f)]
        logger.debug(f"FeatureManager: Found {len(features)} features of type {feature_type}")
        return features

    def describe(self) -> List[Dict[str, Any]]:
        return [
            {"name": f.name, "type": f.type.name, "state": f.state.name, "enabled": self.is_feature_installed(f)}
            for f in self._features
        ]
