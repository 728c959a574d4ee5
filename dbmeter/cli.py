import os
import re
import sys
import logging
import asyncio
import argparse
import textwrap
import platform

from . import __version__
from .support.logging import disable_shortening
from .support.data_logger import DataLogger
from .registers import DEFAULT_I2C_ADDRESS, DEFAULT_I2C_BUS, Filter, Variant
from .bus import I2CBusError
from .bus.linux import LinuxI2CBus
from .bus.simulation import DecibelMeterModel, SimulatedI2CBus
from .device import DecibelMeter, DecibelMeterError


# When running as `-m dbmeter.cli`, `__name__` is `__main__`, and the real name
# can be retrieved from `__loader__.name`.
logger = logging.getLogger(__loader__.name)


filter_names = {
    "none": Filter.NONE,
    "a":    Filter.A_WEIGHTING,
    "c":    Filter.C_WEIGHTING,
}

# total bandwidth covered by the frequency bins
SPECTRUM_BANDWIDTH = 8000 # Hz


class TextHelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog):
        if "COLUMNS" in os.environ:
            columns = int(os.environ["COLUMNS"])
        else:
            try:
                columns, _ = os.get_terminal_size(sys.stderr.fileno())
            except OSError:
                columns = 80
        super().__init__(prog, width=columns, max_help_position=28)

    def _fill_text(self, text, width, indent):
        paragraphs = re.split(r"\n\s*\n", textwrap.dedent(text).strip())
        return "\n\n".join(
            textwrap.fill(re.sub(r"\s+", " ", paragraph), width,
                          initial_indent=indent, subsequent_indent=indent)
            for paragraph in paragraphs)


def version_info():
    python_version = ".".join(map(str, sys.version_info[:3]))
    python_implementation = platform.python_implementation()
    return (f"dbmeter {__version__} "
            f"({python_implementation} {python_version} on {platform.platform()})")


def create_argparser():
    parser = argparse.ArgumentParser(
        prog="dbmeter", formatter_class=TextHelpFormatter, fromfile_prefix_chars="@",
        description="""
        Configure and read out PCB Artists I²C decibel meters, regular and spectrum analyzer
        variants, attached to a Linux I²C bus.

        The bus and address defaults may be overridden with the DBMETER_I2C_BUS and
        DBMETER_I2C_ADDRESS environment variables.
        """)

    parser.add_argument(
        "-V", "--version", action="version", version=version_info(),
        help="show version and exit")
    parser.add_argument(
        "-v", "--verbose", default=0, action="count",
        help="increase logging verbosity")
    parser.add_argument(
        "-q", "--quiet", default=0, action="count",
        help="decrease logging verbosity")
    parser.add_argument(
        "-L", "--log-file", metavar="FILE", type=argparse.FileType("w"),
        help="save log messages at highest verbosity to FILE")
    parser.add_argument(
        "-F", "--filter-log", metavar="FILTER", type=str, action="append",
        help="raise log messages to INFO if they begin with 'FILTER: '")
    parser.add_argument(
        "--no-shorten", default=False, action="store_true",
        help="do not shorten sequences in logs")

    def i2c_bus(arg):
        try:
            bus = int(arg, 0)
        except ValueError:
            raise argparse.ArgumentTypeError(f"{arg!r} is not a bus number")
        if bus < 0:
            raise argparse.ArgumentTypeError(f"{arg!r} is not a bus number")
        return bus
    parser.add_argument(
        "-b", "--bus", metavar="BUS", type=i2c_bus,
        default=os.environ.get("DBMETER_I2C_BUS", str(DEFAULT_I2C_BUS)),
        help="use I²C bus /dev/i2c-BUS (default: %(default)s)")

    def i2c_address(arg):
        try:
            address = int(arg, 0)
        except ValueError:
            raise argparse.ArgumentTypeError(f"{arg!r} is not an I²C address")
        if not 0x08 <= address <= 0x77:
            raise argparse.ArgumentTypeError(f"I²C address {arg} is outside of 0x08..0x77")
        return address
    parser.add_argument(
        "-a", "--address", metavar="ADDR", type=i2c_address,
        default=os.environ.get("DBMETER_I2C_ADDRESS", f"{DEFAULT_I2C_ADDRESS:#04x}"),
        help="I²C address of the decibel meter (default: %(default)s)")
    parser.add_argument(
        "--simulate", metavar="VARIANT", choices=[variant.value for variant in Variant],
        help="talk to a simulated decibel meter of VARIANT instead of the I²C bus "
             "(one of: regular spectrum)")

    def add_config_arguments(parser):
        parser.add_argument(
            "-f", "--filter", metavar="FILTER", choices=list(filter_names),
            help="apply frequency weighting FILTER (one of: none a c)")
        def averaging_time(arg):
            value = int(arg, 0)
            if not 0 <= value <= 0xffff:
                raise argparse.ArgumentTypeError(f"averaging time {arg} is outside of 0..65535")
            return value
        parser.add_argument(
            "-t", "--averaging-time", metavar="MS", type=averaging_time,
            help="average decibel readings over MS milliseconds")

    p_operation = parser.add_subparsers(dest="operation", metavar="OPERATION", required=True)

    p_operation.add_parser(
        "identify", help="read version and detect the device variant")

    p_operation.add_parser(
        "measure", help="read current, minimum and maximum levels")

    p_operation.add_parser(
        "history", help="read up to 100 most recent levels")

    p_spectrum = p_operation.add_parser(
        "spectrum", help="read frequency bins (spectrum analyzer only)")
    p_spectrum.add_argument(
        "--bins", metavar="COUNT", type=int, choices=(16, 64), default=64,
        help="read COUNT frequency bins (one of: 16 64, default: %(default)d)")

    p_configure = p_operation.add_parser(
        "configure", help="change filter and averaging time")
    add_config_arguments(p_configure)

    p_clear = p_operation.add_parser(
        "clear", help="clear history or minimum and maximum levels")
    p_clear.add_argument(
        "what", metavar="WHAT", choices=("history", "min-max"),
        help="clear WHAT (one of: history min-max)")

    p_operation.add_parser(
        "reset", help="reset the device; all settings return to defaults")

    p_power = p_operation.add_parser(
        "power", help="power the device down or up")
    p_power.add_argument(
        "state", metavar="STATE", choices=("down", "up"),
        help="power the device STATE (one of: down up); powering up resets the device")

    p_log = p_operation.add_parser(
        "log", help="log levels periodically", formatter_class=TextHelpFormatter)
    def interval(arg):
        try:
            value = float(arg)
        except ValueError:
            raise argparse.ArgumentTypeError(f"{arg!r} is not a time in seconds")
        if not value > 0:
            raise argparse.ArgumentTypeError(f"interval {arg} must be greater than zero")
        return value
    p_log.add_argument(
        "-i", "--interval", metavar="TIME", type=interval, required=True,
        help="sample each TIME seconds")
    add_config_arguments(p_log)
    DataLogger.add_subparsers(p_log)

    return parser


class TerminalFormatter(logging.Formatter):
    DEFAULT_COLORS = {
        "TRACE"   : "\033[0m",
        "DEBUG"   : "\033[36m",
        "INFO"    : "\033[1m",
        "WARNING" : "\033[1;33m",
        "ERROR"   : "\033[1;31m",
        "CRITICAL": "\033[1;41m",
    }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.colors = dict(self.DEFAULT_COLORS)
        for color_override in os.getenv("DBMETER_COLORS", "").split(":"):
            if color_override:
                level, color = color_override.split("=", 1)
                self.colors[level] = f"\033[{color}m"

    def format(self, record):
        color = self.colors.get(record.levelname, "")
        return f"{color}{super().format(record)}\033[0m"


class SubjectFilter:
    def __init__(self, level, subjects):
        self.level    = level
        self.subjects = tuple(subject + ": " for subject in subjects or ())

    def filter(self, record):
        levelno = record.levelno
        if isinstance(record.msg, str) and record.msg.startswith(self.subjects):
            levelno = logging.INFO
        return levelno >= self.level


def create_logger():
    root_logger = logging.getLogger()

    term_formatter_args = {"style": "{",
        "fmt": "{levelname[0]:s}: {name:s}: {message:s}"}
    term_handler = logging.StreamHandler()
    if sys.stderr.isatty() and sys.platform != "win32":
        term_handler.setFormatter(TerminalFormatter(**term_formatter_args))
    else:
        term_handler.setFormatter(logging.Formatter(**term_formatter_args))
    root_logger.addHandler(term_handler)
    return term_handler


def configure_logger(args, term_handler):
    root_logger = logging.getLogger()

    if args.log_file:
        file_handler = logging.StreamHandler(args.log_file)
        file_handler.setFormatter(logging.Formatter(style="{",
            fmt="[{asctime:s}] {levelname:s}: {name:s}: {message:s}"))
        root_logger.addHandler(file_handler)

    level = logging.INFO + args.quiet * 10 - args.verbose * 10
    if level < logging.DEBUG or args.no_shorten:
        disable_shortening()

    if args.log_file or args.filter_log:
        term_handler.addFilter(SubjectFilter(level, args.filter_log))
        root_logger.setLevel(logging.TRACE)
    else:
        root_logger.setLevel(level)


def simulated_meter(variant):
    model = DecibelMeterModel(variant, level=45)
    for level in (47, 52, 61, 58, 50, 46):
        model.record(level)
    model.bins_64[:] = bytes(70 - index // 2 for index in range(len(model.bins_64)))
    model.bins_16[:] = bytes(70 - index * 2 for index in range(len(model.bins_16)))
    return model


async def apply_config(meter, args):
    if args.filter is not None:
        await meter.set_filter(filter_names[args.filter])
        logger.info("filter set to %s", meter.filter)
    if args.averaging_time is not None:
        await meter.set_averaging_time(args.averaging_time)
        logger.info("averaging time set to %d ms", meter.averaging_time)


async def log_levels(meter, args):
    field_names = dict(level="L(dB)", min="Lmin(dB)", max="Lmax(dB)")
    data_logger = await DataLogger(logger, args, field_names=field_names)
    try:
        while True:
            async def report():
                fields = dict(level=await meter.read_decibel(),
                              min=await meter.read_min(),
                              max=await meter.read_max())
                await data_logger.report_data(fields)
            try:
                await asyncio.wait_for(report(), args.interval * 2)
            except (I2CBusError, DecibelMeterError) as error:
                await data_logger.report_error(str(error), exception=error)
            except asyncio.TimeoutError as error:
                await data_logger.report_error("timeout", exception=error)
            await asyncio.sleep(args.interval)
    finally:
        await data_logger.close()


async def run_operation(meter, args):
    variant = await meter.identify()

    if args.operation == "identify":
        print(f"address : {meter.address:#04x}")
        print(f"version : {meter.version:#04x}")
        print(f"variant : {variant}")

    if args.operation == "measure":
        level = await meter.read_decibel()
        level_min = await meter.read_min()
        level_max = await meter.read_max()
        print(f"level   : {level:3d} dB")
        print(f"minimum : {level_min:3d} dB")
        print(f"maximum : {level_max:3d} dB")

    if args.operation == "history":
        history = await meter.read_history()
        if not history:
            logger.warning("history is empty")
        for index, level in enumerate(history):
            print(f"{index:3d} : {level:3d} dB")

    if args.operation == "spectrum":
        if args.bins == 64:
            bins = await meter.read_frequency_bins_64()
        else:
            bins = await meter.read_frequency_bins_16()
        band_width = SPECTRUM_BANDWIDTH / len(bins)
        for index, level in enumerate(bins):
            print(f"{index * band_width:6.0f}-{(index + 1) * band_width:<6.0f} Hz : {level:3d} dB")

    if args.operation == "configure":
        if args.filter is None and args.averaging_time is None:
            logger.warning("nothing to configure")
        await apply_config(meter, args)

    if args.operation == "clear":
        if args.what == "history":
            await meter.clear_history()
        else:
            await meter.clear_min_max()
        logger.info("cleared %s", args.what)

    if args.operation == "reset":
        await meter.reset_device()
        logger.info("device reset; filter is %s, averaging time is %d ms",
                    meter.filter, meter.averaging_time)

    if args.operation == "power":
        if args.state == "down":
            await meter.power_down()
        else:
            await meter.power_up()
        logger.info("powered %s", args.state)

    if args.operation == "log":
        await apply_config(meter, args)
        await log_levels(meter, args)


async def main(argv=None):
    term_handler = create_logger()

    args = create_argparser().parse_args(argv)
    configure_logger(args, term_handler)

    try:
        if args.simulate:
            bus = SimulatedI2CBus({args.address: simulated_meter(Variant(args.simulate))})
        else:
            bus = await LinuxI2CBus.open(args.bus, logger=logger)
        async with bus:
            await run_operation(DecibelMeter(bus, args.address, logger=logger), args)
    except (I2CBusError, DecibelMeterError) as error:
        logger.error("%s", error)
        return 1

    return 0


# This entry point is invoked via `console_scripts` when installing the package.
def run_main():
    try:
        exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("interrupted")


# This entry point is invoked when running `python -m dbmeter.cli`.
if __name__ == "__main__":
    run_main()
