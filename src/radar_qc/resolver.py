"""
Three-tier attribute lookup: source file, site overrides, common defaults.
"""

import re
from typing import Iterable, Optional

from .container import RadarContainer
from .settings import AttributeKind, AttributeValue, NamelistAttribute, Settings


def generic_group(group: str) -> str:
    """
    Strip elevation/moment indices from a concrete group path.

    ``'dataset3/data2/what'`` becomes ``'dataset/data/what'`` so it can be
    compared with the generic paths of the namelist.
    """
    return re.sub(r"\d+", "", group).strip("/")


class AttributeResolver:
    """
    Resolves metadata attributes with namelist fallbacks.

    Parameters
    ----------
    container : RadarContainer
        Source file, consulted first
    settings : Settings
        Holds the site-specific and common defaults
    site : str
        Five-character site code selecting the site-specific overrides
    """

    def __init__(self, container: RadarContainer, settings: Settings, site: str):
        self.container = container
        self.settings = settings
        self.site = site

    @staticmethod
    def _lookup(
        attributes: Iterable[NamelistAttribute], group: str, name: str, kind: AttributeKind
    ) -> Optional[AttributeValue]:
        key = generic_group(group)
        for att in attributes:
            if att.name == name and generic_group(att.group) == key and att.kind == kind:
                return att.value
        return None

    def resolve(self, group: str, name: str, kind: AttributeKind) -> Optional[AttributeValue]:
        """
        Find an attribute value.

        Parameters
        ----------
        group : str
            Concrete group path in the source file, e.g. ``'dataset2/where'``
        name : str
            Attribute name
        kind : AttributeKind
            Expected type

        Returns
        -------
        str, int, float or None
            The first defined value of file, site override and common
            default, in that order; None when all three are undefined
        """
        value = self.container.get_attr(group, name, kind)
        if value is not None:
            return value
        value = self._lookup(self.settings.attributes_for_site(self.site), group, name, kind)
        if value is not None:
            return value
        return self._lookup(self.settings.common_attributes, group, name, kind)
