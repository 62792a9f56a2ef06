from cotask.modules.notes.schemas import NoteResponse
from cotask.modules.sharing.models import NoteResource
from cotask.modules.sharing.service import ResourceService


class NoteService(ResourceService):
    """Notes have no child rows; everything else comes from ResourceService."""

    resource_class = NoteResource
    response_class = NoteResponse
    content_fields = ("title", "content")
    search_fields = ("title", "content")

    def _creation_defaults(self):
        return {"content": ""}
