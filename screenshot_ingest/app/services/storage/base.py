from abc import ABC, abstractmethod


class BlobSinkError(RuntimeError):
    pass


class BlobSink(ABC):
    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str, overwrite: bool = False) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def delete(self, path: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    def signed_url(self, path: str, expires_in: int) -> str:  # pragma: no cover - interface
        raise NotImplementedError
