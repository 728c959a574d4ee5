import asyncio
import logging

from smbus2 import SMBus

from ..support.logging import dump_hex
from . import I2CBus, I2CBusError


__all__ = ["LinuxI2CBus"]


class LinuxI2CBus(I2CBus):
    """
    I²C bus exposed by the Linux ``i2c-dev`` driver as ``/dev/i2c-N``.

    The ioctls are blocking, so every transfer is performed in the default executor. Transfers
    are serialized per bus because ``smbus2`` selects the target address with a separate ioctl
    before each transfer.

    Use ``await LinuxI2CBus.open(bus_number)`` to construct.
    """

    def __init__(self, smbus: SMBus, bus_number: int, logger: logging.Logger = None):
        self._smbus      = smbus
        self._bus_number = bus_number
        self._lock       = asyncio.Lock()
        self._logger     = logger or logging.getLogger(__name__)

    @classmethod
    async def open(cls, bus_number: int = 1, *, logger: logging.Logger = None):
        try:
            smbus = await asyncio.to_thread(SMBus, bus_number)
        except OSError as error:
            raise I2CBusError(f"cannot open /dev/i2c-{bus_number}: {error.strerror or error}",
                              operation="open") from error
        bus = cls(smbus, bus_number, logger)
        bus._logger.debug("opened /dev/i2c-%d", bus_number)
        return bus

    @property
    def bus_number(self) -> int:
        return self._bus_number

    def __repr__(self):
        return f"<{type(self).__name__} /dev/i2c-{self._bus_number}>"

    async def _transfer(self, operation, address, register, function, *args):
        if self._smbus is None:
            raise I2CBusError(f"/dev/i2c-{self._bus_number} is closed",
                              address=address, register=register, operation=operation)
        async with self._lock:
            try:
                return await asyncio.to_thread(function, address, register, *args)
            except OSError as error:
                raise I2CBusError(f"/dev/i2c-{self._bus_number}: {error.strerror or error}",
                                  address=address, register=register,
                                  operation=operation) from error

    async def read_byte(self, address: int, register: int) -> int:
        return await self._transfer("read", address, register,
                                    self._smbus.read_byte_data)

    async def write_byte(self, address: int, register: int, value: int):
        await self._transfer("write", address, register,
                             self._smbus.write_byte_data, value)

    async def read_block(self, address: int, register: int, length: int) -> bytes:
        self._check_block_length(length)
        data = bytes(await self._transfer("read block", address, register,
                                          self._smbus.read_i2c_block_data, length))
        if len(data) != length:
            raise I2CBusError(f"short read of {len(data)} out of {length} bytes",
                              address=address, register=register, operation="read block")
        self._logger.log(logging.TRACE, "I2C: addr=%#04x reg=%#04x block=<%s>",
                         address, register, dump_hex(data))
        return data

    async def close(self):
        if self._smbus is not None:
            smbus, self._smbus = self._smbus, None
            await asyncio.to_thread(smbus.close)
            self._logger.debug("closed /dev/i2c-%d", self._bus_number)
