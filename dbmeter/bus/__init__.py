from abc import ABCMeta, abstractmethod


__all__ = ["I2CBusError", "I2CBus"]


class I2CBusError(Exception):
    """A transfer on the I²C bus failed (not acknowledged, arbitration lost, adapter gone, ...)."""

    def __init__(self, message, *, address=None, register=None, operation=None):
        super().__init__(message)
        self.address   = address
        self.register  = register
        self.operation = operation

    def __str__(self):
        context = []
        if self.operation is not None:
            context.append(self.operation)
        if self.address is not None:
            context.append(f"addr={self.address:#04x}")
        if self.register is not None:
            context.append(f"reg={self.register:#04x}")
        if not context:
            return super().__str__()
        return f"{super().__str__()} ({' '.join(context)})"


class I2CBus(metaclass=ABCMeta):
    """
    Asynchronous register-oriented access to an I²C bus.

    All addresses are 7-bit. Implementations raise :class:`I2CBusError` for any failed
    transfer and never return partial data.
    """

    MAX_BLOCK_SIZE = 32

    def _check_block_length(self, length: int):
        if not 1 <= length <= self.MAX_BLOCK_SIZE:
            raise ValueError(f"block length {length} is outside of 1..{self.MAX_BLOCK_SIZE}")

    @abstractmethod
    async def read_byte(self, address: int, register: int) -> int:
        pass

    @abstractmethod
    async def write_byte(self, address: int, register: int, value: int):
        pass

    @abstractmethod
    async def read_block(self, address: int, register: int, length: int) -> bytes:
        pass

    async def close(self):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()
