"""Tagged image library used to build and grade puzzles.

A target label (what the player is told to select, e.g. ``"TRAFFIC LIGHTS"``)
maps to one content tag (``"traffic_light"``). An image is correct for a
puzzle when its tag set contains the label's tag.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set

PLACEHOLDER_URL = 'https://via.placeholder.com/150?text={text}'


@dataclass(frozen=True)
class CatalogImage:
    url: str
    tags: FrozenSet[str] = field(default_factory=frozenset)


class ImageCatalog:
    def __init__(self, images: Iterable[CatalogImage], labels: Dict[str, str]):
        self._images: List[CatalogImage] = list(images)
        self._by_url: Dict[str, CatalogImage] = {img.url: img for img in self._images}
        self.labels: Dict[str, str] = dict(labels)

    def __len__(self) -> int:
        return len(self._images)

    @property
    def label_pool(self) -> List[str]:
        return sorted(self.labels)

    def tag_for(self, label: str) -> Optional[str]:
        return self.labels.get(label)

    def tags_of(self, url: str) -> FrozenSet[str]:
        img = self._by_url.get(url)
        return img.tags if img else frozenset()

    def tagged(self, label: str) -> List[CatalogImage]:
        tag = self.tag_for(label)
        if tag is None:
            return []
        return [img for img in self._images if tag in img.tags]

    def untagged(self, label: str) -> List[CatalogImage]:
        tag = self.tag_for(label)
        return [img for img in self._images if tag not in img.tags]

    def correct_indices(self, images: Sequence[str], label: str) -> Set[int]:
        """Indices of ``images`` whose tags match ``label``.

        Unknown URLs carry no tags, so they are never correct.
        """
        tag = self.tag_for(label)
        if tag is None:
            return set()
        return {i for i, url in enumerate(images) if tag in self.tags_of(url)}


DEFAULT_LABELS = {
    'CARS': 'car',
    'TRAFFIC LIGHTS': 'traffic_light',
    'BICYCLES': 'bicycle',
    'CROSSWALKS': 'crosswalk',
    'BUSES': 'bus',
    'FIRE HYDRANTS': 'hydrant',
}


def _placeholder(tag: str, n: int) -> CatalogImage:
    return CatalogImage(PLACEHOLDER_URL.format(text=f'{tag}+{n}'), frozenset({tag}))


def build_default_catalog(per_tag: int = 6) -> ImageCatalog:
    images = [
        _placeholder(tag, n)
        for tag in DEFAULT_LABELS.values()
        for n in range(1, per_tag + 1)
    ]
    # Street scenes with more than one subject
    images.append(CatalogImage(PLACEHOLDER_URL.format(text='intersection+1'), frozenset({'car', 'traffic_light'})))
    images.append(CatalogImage(PLACEHOLDER_URL.format(text='intersection+2'), frozenset({'crosswalk', 'traffic_light'})))
    images.append(CatalogImage(PLACEHOLDER_URL.format(text='bus+stop'), frozenset({'bus', 'crosswalk'})))
    return ImageCatalog(images, DEFAULT_LABELS)


default_catalog = build_default_catalog()
