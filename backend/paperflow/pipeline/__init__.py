"""
Document pipeline: status lifecycle, stage processors, event delivery and
the recovery sweep.

Import from the submodules (``paperflow.pipeline.stages``,
``paperflow.pipeline.factory``...); this package has no re-exports so the
ORM models can depend on ``pipeline.status`` without an import cycle.
"""
