"""Helper classes and functions for tests."""

from agents_hosting.adapter import BaseAdapter
from agents_hosting.models import Activity, ResourceResponse
from tests.fixtures.activity_fixtures import MESSAGE_ACTIVITY


class RecordingAdapter(BaseAdapter):
    """Adapter that records outbound operations instead of calling a channel."""

    def __init__(self):
        super().__init__()
        self.sent = []
        self.updated = []
        self.deleted = []

    async def send_activities(self, context, activities):
        responses = []
        for activity in activities:
            self.sent.append(activity)
            responses.append(ResourceResponse(id=f"sent-{len(self.sent)}"))
        return responses

    async def update_activity(self, context, activity):
        self.updated.append(activity)

    async def delete_activity(self, context, reference):
        self.deleted.append(reference)


def make_activity(**overrides) -> Activity:
    """Build an inbound activity from the message fixture.

    Args:
        **overrides: Wire (camelCase) keys to replace in the fixture

    Returns:
        The validated Activity
    """
    payload = {**MESSAGE_ACTIVITY, **overrides}
    return Activity.model_validate(payload)
