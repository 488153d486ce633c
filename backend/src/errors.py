"""Error types shared by the geo query engine, storage and HTTP layers."""


class InvalidArgument(ValueError):
    """Bad caller input: non-finite or out-of-range coordinates, non-positive radius or limit."""


class StorageUnavailable(RuntimeError):
    """The SQLite store could not be read or written. Transient; not retried here."""


class UploadTooLarge(ValueError):
    def __init__(self, max_bytes: int):
        super().__init__(f"Upload exceeds the {max_bytes // (1024 * 1024)} MB limit.")
        self.max_bytes = max_bytes
