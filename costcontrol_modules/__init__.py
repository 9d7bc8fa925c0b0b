"""
Cost-control domain modules.

- wbs: project work-breakdown structure authoring
- budget: budget versions, lines, APU resources and rollups
- certification: cumulative progress billing with integrity seals

Each module follows the same layout: frozen DTOs in ``models``, SQLAlchemy
rows in ``orm``, state machines in ``workflows``, a transaction-owning
``service`` and a read-only ``selector``.
"""
