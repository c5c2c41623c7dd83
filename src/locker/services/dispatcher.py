"""Run vault operations off the caller's thread and deliver results back."""
from __future__ import annotations

import asyncio
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar, Union

import structlog

from ..core.exceptions import CryptoError, UnknownCryptoError
from .vault import KeyVault

log = structlog.get_logger(__name__)

T = TypeVar("T")
Deliver = Callable[..., object]


@dataclass(frozen=True)
class Outcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[CryptoError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


Completion = Callable[[Outcome[str]], None]


def _call_inline(callback: Callable[..., object], *args: object) -> None:
    callback(*args)


class _OnceCompletion:
    """Forward the first outcome to ``deliver``; later calls are dropped."""

    def __init__(self, completion: Completion, deliver: Deliver) -> None:
        self._completion = completion
        self._deliver = deliver
        self._lock = threading.Lock()
        self._fired = False

    def __call__(self, outcome: Outcome[str]) -> bool:
        with self._lock:
            if self._fired:
                log.warning("dispatcher.duplicate_completion")
                return False
            self._fired = True
        self._deliver(self._completion, outcome)
        return True


class VaultDispatcher:
    """Callback front end for :class:`KeyVault`.

    ``encrypt`` only touches the public key and runs on the calling thread.
    ``decrypt`` may wait on an authentication prompt, so it runs on the worker
    executor. Either way ``completion`` fires exactly once, through
    ``deliver``, which marshals it onto the caller's context (inline by
    default; see :meth:`for_loop`). Issued calls cannot be cancelled.
    """

    def __init__(
        self,
        vault: KeyVault,
        *,
        executor: Executor | None = None,
        deliver: Deliver | None = None,
    ) -> None:
        self._vault = vault
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="locker-vault")
        self._deliver = deliver or _call_inline

    @classmethod
    def for_loop(
        cls, vault: KeyVault, loop: asyncio.AbstractEventLoop, *, executor: Executor | None = None
    ) -> "VaultDispatcher":
        return cls(vault, executor=executor, deliver=loop.call_soon_threadsafe)

    @property
    def vault(self) -> KeyVault:
        return self._vault

    def has_key(self) -> bool:
        return self._vault.has_key()

    def remove_key(self) -> bool:
        return self._vault.remove_key()

    def encrypt(self, plaintext: str, completion: Completion) -> Outcome[str]:
        outcome = self._run(self._vault.encrypt, plaintext)
        _OnceCompletion(completion, self._deliver)(outcome)
        return outcome

    def decrypt(self, ciphertext: Union[str, bytes], completion: Completion) -> Future[Outcome[str]]:
        once = _OnceCompletion(completion, self._deliver)

        def work() -> Outcome[str]:
            outcome = self._run(self._vault.decrypt, ciphertext)
            once(outcome)
            return outcome

        return self._executor.submit(work)

    async def encrypt_async(self, plaintext: str) -> str:
        return self._vault.encrypt(plaintext)

    async def decrypt_async(self, ciphertext: Union[str, bytes]) -> str:
        return await asyncio.to_thread(self._vault.decrypt, ciphertext)

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def __enter__(self) -> "VaultDispatcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    @staticmethod
    def _run(operation: Callable[[T], str], argument: T) -> Outcome[str]:
        try:
            return Outcome(value=operation(argument))
        except CryptoError as exc:
            return Outcome(error=exc)
        except Exception as exc:  # completion must still fire once
            log.exception("dispatcher.unexpected_error")
            return Outcome(error=UnknownCryptoError(cause=exc))


__all__ = ["Completion", "Outcome", "VaultDispatcher"]
