"""Pinned SRI digests for well-known public geography documents.

Regenerate with ``geofetch sri <url>...`` when a pinned document changes.
"""

from types import MappingProxyType

from geofetch.fetch.integrity import SRIRecord


_WORLD_ATLAS = "https://unpkg.com/world-atlas@2"

KNOWN_GEOGRAPHY_SRI: MappingProxyType[str, SRIRecord] = MappingProxyType(
    {
        # World Atlas countries
        f"{_WORLD_ATLAS}/countries-110m.json": SRIRecord.from_integrity(
            "sha384-yOCJ+8ShBm8UDqtAVtAvxTDDf4gXo5edxl/YG0FmVC5OTmqVLl7utuVGBDEeZWHf"
        ),
        f"{_WORLD_ATLAS}/countries-50m.json": SRIRecord.from_integrity(
            "sha384-Aw4s9pX1PTPntIYkZ/qV9IYiF5Gv8eTl6Dd/TT56zfO1Wwd+owFwYUuuXNUMrWkc"
        ),
        # World Atlas land
        f"{_WORLD_ATLAS}/land-110m.json": SRIRecord.from_integrity(
            "sha384-5oFOGoMd0tkagYW08lVco4uAi7XDEDBwBxOdeKx+SA1ihbsHiR/aFAJGretluTzG"
        ),
        f"{_WORLD_ATLAS}/land-50m.json": SRIRecord.from_integrity(
            "sha384-c0VeCJd1wVbV5WQZNjf1hcMqPr9QXweEArnbdgS1k75TBNjta2M/NddyAulA/Glb"
        ),
    }
)
