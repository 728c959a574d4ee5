import asyncio
import logging

from .support.logging import dump_hex, dump_seq
from .registers import (
    REG_VERSION, REG_CONTROL, REG_TAVG_HIGH, REG_TAVG_LOW, REG_RESET, REG_DECIBEL, REG_MIN,
    REG_MAX, REG_DBHISTORY_0, REG_FREQ_64BINS_0, REG_FREQ_16BINS_0,
    BIT_VERSION_REGULAR, BIT_CONTROL_PDOWN, MASK_CONTROL_FILTER,
    BIT_RESET_MIN_MAX, BIT_RESET_HISTORY, BIT_RESET_SYSTEM,
    DBHISTORY_SIZE, FREQ_64BINS_SIZE, FREQ_16BINS_SIZE,
    DEFAULT_I2C_ADDRESS, DEFAULT_I2C_BUS, DEFAULT_AVERAGING_TIME, DEFAULT_FILTER,
    MAX_AVERAGING_TIME, Filter, Variant, bit_filter,
)
from .bus import I2CBus
from .bus.linux import LinuxI2CBus


__all__ = [
    "DecibelMeterError", "InvalidArgumentError", "UnsupportedOperationError",
    "DecibelMeter", "open_meter",
]


class DecibelMeterError(Exception):
    pass


class InvalidArgumentError(DecibelMeterError, ValueError):
    pass


class UnsupportedOperationError(DecibelMeterError):
    pass


class DecibelMeter:
    """
    Driver for the PCB Artists I²C decibel meter, regular and spectrum analyzer variants.

    Constructing the driver does not communicate with the device. Await :meth:`identify`
    (or use :func:`open_meter`) to detect the variant; the frequency bin readouts identify
    the device on first use if that has not been done.

    Each operation holds a per-device lock for its whole register sequence, since the device
    has no transaction framing and interleaved accesses would corrupt read-modify-write cycles
    and multi-chunk reads.
    """

    def __init__(self, bus: I2CBus, address: int = DEFAULT_I2C_ADDRESS, *,
                 logger: logging.Logger = None, owns_bus: bool = False):
        self._bus     = bus
        self._address = address
        self._logger  = logger or logging.getLogger(__name__)
        self._level   = logging.DEBUG if self._logger.name == __name__ else logging.TRACE
        self._lock    = asyncio.Lock()
        self._owns_bus = owns_bus

        self._version = None
        self._variant = None
        self._filter  = DEFAULT_FILTER
        self._averaging_time = DEFAULT_AVERAGING_TIME

    def __repr__(self):
        return f"<{type(self).__name__} addr={self._address:#04x} variant={self._variant}>"

    def _log(self, message, *args):
        self._logger.log(self._level, "DBMETER: " + message, *args)

    async def _read_reg8u(self, reg: int) -> int:
        byte = await self._bus.read_byte(self._address, reg)
        self._log("reg=%#04x read=%#04x", reg, byte)
        return byte

    async def _write_reg8u(self, reg: int, byte: int):
        await self._bus.write_byte(self._address, reg, byte)
        self._log("reg=%#04x write=%#04x", reg, byte)

    async def _read_block(self, reg: int, size: int) -> bytes:
        data = bytes(await self._bus.read_block(self._address, reg, size))
        self._log("reg=%#04x read=<%s>", reg, dump_hex(data))
        return data

    async def _read_chunked(self, reg: int, size: int) -> list[int]:
        data = []
        for offset in range(0, size, self._bus.MAX_BLOCK_SIZE):
            data += await self._read_block(reg + offset,
                                           min(self._bus.MAX_BLOCK_SIZE, size - offset))
        return data

    async def _command(self, code: int):
        await self._write_reg8u(REG_RESET, code)

    def _restore_defaults(self):
        self._filter  = DEFAULT_FILTER
        self._averaging_time = DEFAULT_AVERAGING_TIME

    async def _identify(self) -> Variant:
        version = await self._read_reg8u(REG_VERSION)
        if version == BIT_VERSION_REGULAR:
            variant = Variant.REGULAR
        else:
            variant = Variant.SPECTRUM
        self._version = version
        self._variant = variant
        self._log("version=%#04x variant=%s", version, variant)
        return variant

    async def _check_spectrum(self):
        if self._variant is None:
            await self._identify()
        if self._variant != Variant.SPECTRUM:
            raise UnsupportedOperationError(
                "frequency bins are only available on the spectrum analyzer variant")

    @property
    def address(self) -> int:
        return self._address

    @property
    def version(self) -> int | None:
        """Raw contents of the version register, or ``None`` if not identified yet."""
        return self._version

    @property
    def variant(self) -> Variant | None:
        return self._variant

    @property
    def is_spectrum_analyzer(self) -> bool:
        return self._variant == Variant.SPECTRUM

    @property
    def filter(self) -> Filter:
        """Filter last applied by :meth:`set_filter`."""
        return self._filter

    @property
    def averaging_time(self) -> int:
        """Averaging time in milliseconds last applied by :meth:`set_averaging_time`."""
        return self._averaging_time

    async def identify(self) -> Variant:
        """Read the version register and determine the device variant."""
        async with self._lock:
            return await self._identify()

    async def set_filter(self, filter: Filter):
        """
        Select the frequency weighting of the decibel readings.

        ``filter`` may be a :class:`Filter` or its integer value. Other bits of the control
        register are preserved.
        """
        if isinstance(filter, int) and not isinstance(filter, bool):
            try:
                filter = Filter(filter)
            except ValueError:
                pass
        if not isinstance(filter, Filter):
            raise InvalidArgumentError(f"invalid filter {filter!r}")

        async with self._lock:
            control = await self._read_reg8u(REG_CONTROL)
            control = (control & ~MASK_CONTROL_FILTER) | bit_filter[filter]
            await self._write_reg8u(REG_CONTROL, control)
            self._filter = filter

    async def power_down(self):
        async with self._lock:
            control = await self._read_reg8u(REG_CONTROL)
            await self._write_reg8u(REG_CONTROL, control | BIT_CONTROL_PDOWN)

    async def power_up(self):
        """
        Wake the device up from power down.

        The only way out of power down is a system reset, so all settings return to their
        defaults and have to be applied again.
        """
        async with self._lock:
            await self._command(BIT_RESET_SYSTEM)
            self._restore_defaults()

    async def set_averaging_time(self, ms: int):
        """Set the time window, in milliseconds, over which the decibel reading is averaged."""
        if (not isinstance(ms, int) or isinstance(ms, bool) or
                not 0 <= ms <= MAX_AVERAGING_TIME):
            raise InvalidArgumentError(
                f"averaging time {ms!r} is outside of 0..{MAX_AVERAGING_TIME} ms")

        async with self._lock:
            # the device latches both bytes when TAVG_LOW is written
            await self._write_reg8u(REG_TAVG_HIGH, ms >> 8)
            await self._write_reg8u(REG_TAVG_LOW,  ms & 0xff)
            self._averaging_time = ms

    async def clear_history(self):
        async with self._lock:
            await self._command(BIT_RESET_HISTORY)

    async def clear_min_max(self):
        async with self._lock:
            await self._command(BIT_RESET_MIN_MAX)

    async def reset_device(self):
        """Reset the device; all settings return to their defaults."""
        async with self._lock:
            await self._command(BIT_RESET_SYSTEM)
            self._restore_defaults()

    async def read_decibel(self) -> int:
        async with self._lock:
            return await self._read_reg8u(REG_DECIBEL)

    async def read_min(self) -> int:
        """Minimum level since power on or the last :meth:`clear_min_max`."""
        async with self._lock:
            return await self._read_reg8u(REG_MIN)

    async def read_max(self) -> int:
        """Maximum level since power on or the last :meth:`clear_min_max`."""
        async with self._lock:
            return await self._read_reg8u(REG_MAX)

    async def read_history(self) -> list[int]:
        """
        Read up to 100 most recent levels, newest first.

        The device marks the end of valid history with a zero byte, so the readout stops at
        the first zero and fewer entries are returned after a reset or :meth:`clear_history`.
        """
        history = []
        async with self._lock:
            while len(history) < DBHISTORY_SIZE:
                size = min(self._bus.MAX_BLOCK_SIZE, DBHISTORY_SIZE - len(history))
                chunk = await self._read_block(REG_DBHISTORY_0 + len(history), size)
                if 0 in chunk:
                    history += chunk[:chunk.index(0)]
                    break
                history += chunk
        self._log("history=<%s>", dump_seq(" ", history))
        return history

    async def read_frequency_bins_64(self) -> list[int]:
        """
        Read the magnitude, in dB SPL, of 64 frequency bands spanning 8 kHz.

        No weighting filter is applied to frequency data. Only available on the spectrum
        analyzer variant.
        """
        async with self._lock:
            await self._check_spectrum()
            return await self._read_chunked(REG_FREQ_64BINS_0, FREQ_64BINS_SIZE)

    async def read_frequency_bins_16(self) -> list[int]:
        """Same as :meth:`read_frequency_bins_64`, with 16 bands."""
        async with self._lock:
            await self._check_spectrum()
            return await self._read_chunked(REG_FREQ_16BINS_0, FREQ_16BINS_SIZE)

    async def close(self):
        """Close the bus if it was opened by :func:`open_meter`."""
        if self._owns_bus:
            await self._bus.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()


async def open_meter(bus_number: int = DEFAULT_I2C_BUS, address: int = DEFAULT_I2C_ADDRESS, *,
                     logger: logging.Logger = None) -> DecibelMeter:
    """
    Open ``/dev/i2c-<bus_number>``, identify the decibel meter at ``address`` and return
    its driver. The bus is closed together with the driver.
    """
    bus = await LinuxI2CBus.open(bus_number, logger=logger)
    meter = DecibelMeter(bus, address, logger=logger, owns_bus=True)
    try:
        await meter.identify()
    except BaseException:
        await bus.close()
        raise
    return meter
