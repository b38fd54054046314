"""Lookup errors shared by services and the API layer."""


class NotFoundError(Exception):
    """Requested record does not exist."""

    resource = "Resource"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"{self.resource} {identifier} not found")


class GalleryNotFoundError(NotFoundError):
    resource = "Gallery"


class FaceNotFoundError(NotFoundError):
    resource = "Face"


class ClusterNotFoundError(NotFoundError):
    resource = "Person cluster"
