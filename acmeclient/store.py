"""Storage of key, certificate and order material in named slots.

The certificate side uses the slots *public_key*, *private_key*, *certificate*, *fullchain_certificate* and
*order*, the account side *private_key* and *public_key*. A slot name may carry a suffix separated by a dot,
e.g. *private_key.new*, which addresses a sibling of the slot's location.
"""
import abc
import logging
import os
import typing
from pathlib import Path

from acmeclient.client.exceptions import InvalidArgument, InvalidConfiguration
from acmeclient.util import KEY_FILE_MODE

logger = logging.getLogger(__name__)

CERTIFICATE_SLOTS = (
    "public_key",
    "private_key",
    "certificate",
    "fullchain_certificate",
    "order",
)
ACCOUNT_SLOTS = ("private_key", "public_key")

CERTIFICATE_FILES = {
    "public_key": "public.pem",
    "private_key": "private.pem",
    "certificate": "certificate.crt",
    "fullchain_certificate": "fullchain.crt",
    "order": "order",
}
ACCOUNT_FILES = {
    "private_key": "private.pem",
    "public_key": "public.pem",
}

ARCHIVE_SUFFIX = "old"


class KeyStore(abc.ABC):
    """Abstract store of named slots.

    Implementations must make :meth:`write` and :meth:`rename` atomic, so that a slot
    never holds partially written key material.
    """

    @abc.abstractmethod
    def slots(self) -> typing.Iterable[str]:
        """The base slots this store was configured with."""
        pass

    def configured(self, slot: str) -> bool:
        return slot.partition(".")[0] in self.slots()

    @abc.abstractmethod
    def exists(self, slot: str) -> bool:
        pass

    @abc.abstractmethod
    def read(self, slot: str) -> bytes:
        pass

    @abc.abstractmethod
    def write(self, slot: str, data: bytes) -> None:
        pass

    @abc.abstractmethod
    def rename(self, source: str, destination: str) -> None:
        """Moves the contents of *source* to *destination*, replacing it."""
        pass

    @abc.abstractmethod
    def delete(self, slot: str) -> None:
        pass

    def purge(self) -> None:
        """Deletes the contents of every slot."""
        for slot in self.slots():
            if self.exists(slot):
                self.delete(slot)

    def archive(self, suffix: str = ARCHIVE_SUFFIX) -> None:
        """Moves the contents of every slot aside by renaming it to *slot.suffix*."""
        for slot in self.slots():
            if self.exists(slot):
                self.rename(slot, f"{slot}.{suffix}")


class FileKeyStore(KeyStore):
    """A :class:`KeyStore` that maps every slot to a file."""

    PRIVATE_SLOTS = frozenset(["private_key"])
    """Slots whose files are created with mode *0600*."""

    def __init__(self, paths: typing.Mapping[str, typing.Union[str, Path]]):
        self._paths = {slot: Path(path) for slot, path in paths.items()}

    def slots(self) -> typing.Iterable[str]:
        return self._paths.keys()

    def path(self, slot: str) -> Path:
        base, _, suffix = slot.partition(".")
        try:
            path = self._paths[base]
        except KeyError:
            raise InvalidConfiguration(f"Slot {base} is not configured")

        return path.with_name(f"{path.name}.{suffix}") if suffix else path

    def exists(self, slot: str) -> bool:
        return self.configured(slot) and self.path(slot).is_file()

    def read(self, slot: str) -> bytes:
        return self.path(slot).read_bytes()

    def write(self, slot: str, data: bytes) -> None:
        path = self.path(slot)
        mode = KEY_FILE_MODE if slot.partition(".")[0] in self.PRIVATE_SLOTS else 0o644
        tmp = path.with_name(f".{path.name}.tmp")

        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

        logger.debug("Wrote %s to %s", slot, path)

    def rename(self, source: str, destination: str) -> None:
        os.replace(self.path(source), self.path(destination))
        logger.debug("Renamed %s to %s", self.path(source), self.path(destination))

    def delete(self, slot: str) -> None:
        self.path(slot).unlink(missing_ok=True)
        logger.debug("Deleted %s", self.path(slot))

    @classmethod
    def for_certificate(
        cls, keys: typing.Union[str, Path, typing.Mapping[str, str]]
    ) -> "FileKeyStore":
        """Creates the certificate side store.

        :param keys: Either the directory that holds the files, created if missing, or a mapping of slots to
            file paths. The mapping must contain *private_key* and at least one of *certificate* and
            *fullchain_certificate*. *order* and *public_key* default to files next to *private_key*.
        :raises: :class:`~acmeclient.client.exceptions.InvalidConfiguration` If the mapping is incomplete or
            refers to a directory that does not exist.
        """
        if isinstance(keys, (str, Path)):
            directory = Path(keys)
            directory.mkdir(mode=0o755, parents=True, exist_ok=True)
            return cls({slot: directory / name for slot, name in CERTIFICATE_FILES.items()})

        keys = {slot: Path(path) for slot, path in keys.items()}
        if unknown := keys.keys() - set(CERTIFICATE_SLOTS):
            raise InvalidConfiguration(f"Unknown certificate key slots: {', '.join(sorted(unknown))}")
        if "certificate" not in keys and "fullchain_certificate" not in keys:
            raise InvalidConfiguration(
                "certificate_keys[certificate] or certificate_keys[fullchain_certificate] file path must be set."
            )
        if "private_key" not in keys:
            raise InvalidConfiguration("certificate_keys[private_key] file path must be set.")

        keys.setdefault("order", keys["private_key"].parent / CERTIFICATE_FILES["order"])
        keys.setdefault("public_key", keys["private_key"].parent / CERTIFICATE_FILES["public_key"])

        cls._check_directories(keys)
        return cls(keys)

    @classmethod
    def for_account(
        cls,
        keys: typing.Union[str, Path, typing.Mapping[str, str]],
        base: typing.Union[str, Path] = None,
    ) -> "FileKeyStore":
        """Creates the account side store.

        :param keys: Either a directory, relative to *base* if that is given, or a mapping that contains
            *private_key* and *public_key*.
        :param base: The certificate key directory.
        """
        if isinstance(keys, (str, Path)):
            directory = Path(base) / keys if base is not None else Path(keys)
            directory.mkdir(mode=0o755, parents=True, exist_ok=True)
            return cls({slot: directory / name for slot, name in ACCOUNT_FILES.items()})

        keys = {slot: Path(path) for slot, path in keys.items()}
        for slot in ACCOUNT_SLOTS:
            if slot not in keys:
                raise InvalidConfiguration(f"account_keys[{slot}] file path must be set.")
        if unknown := keys.keys() - set(ACCOUNT_SLOTS):
            raise InvalidConfiguration(f"Unknown account key slots: {', '.join(sorted(unknown))}")

        cls._check_directories(keys)
        return cls(keys)

    @staticmethod
    def _check_directories(keys: typing.Mapping[str, Path]) -> None:
        for path in keys.values():
            if not path.parent.is_dir():
                raise InvalidConfiguration(f"Directory {path.parent} does not exist")


def open_stores(
    certificate_keys: typing.Union[str, Path, typing.Mapping[str, str]],
    account_keys: typing.Union[str, Path, typing.Mapping[str, str]],
) -> typing.Tuple[FileKeyStore, FileKeyStore]:
    """Opens the certificate and account stores.

    Both locations must be given in the same form, either as directories or as mappings.

    :return: The certificate store and the account store.
    """
    certificate_is_dir = isinstance(certificate_keys, (str, Path))
    account_is_dir = isinstance(account_keys, (str, Path))
    if certificate_is_dir != account_is_dir:
        raise InvalidArgument(
            "certificate_keys and account_keys must both be directories or both be mappings."
        )

    certificate_store = FileKeyStore.for_certificate(certificate_keys)
    account_store = FileKeyStore.for_account(
        account_keys, base=certificate_keys if certificate_is_dir else None
    )
    return certificate_store, account_store
