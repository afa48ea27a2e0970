"""Registry layer: the read-facing catalog over one or more registries.

The registry layer provides:
- Cataloging: versioned servers and skills, keyed by name and version
- Aggregation: one collision-free view over every configured registry
- Pagination: opaque cursors over name-ordered listings
- Mutation: publish and delete on managed registries
"""
