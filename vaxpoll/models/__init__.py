from vaxpoll.models.source_snapshot import SourceSnapshot

__all__ = ["SourceSnapshot"]
