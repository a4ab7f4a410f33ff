class AdapterError(Exception):
    """A provider payload that cannot be trusted or understood. Rejected at the boundary."""

    def __init__(self, provider, message):
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class InvalidSignature(AdapterError):
    pass


class MalformedPayload(AdapterError):
    pass


class MissingField(AdapterError):

    def __init__(self, provider, field_name):
        self.field_name = field_name
        super().__init__(provider, f"missing required field '{field_name}'")


class EntityNotFound(Exception):
    """The school or student named by a reference does not exist. Terminal for the event."""
    entity = 'entity'

    def __init__(self, *identifiers):
        self.identifiers = identifiers
        super().__init__(f"{self.entity} not found: {'/'.join(str(i) for i in identifiers)}")


class SchoolNotFound(EntityNotFound):
    entity = 'school'


class StudentNotFound(EntityNotFound):
    entity = 'student'


class DuplicateEventError(Exception):
    """Raised when the idempotency marker for an event already exists."""

    def __init__(self, provider, event_id):
        self.provider = provider
        self.event_id = event_id
        super().__init__(f"event {provider}:{event_id} already processed")
