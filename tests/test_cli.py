import io
import os
import asyncio
import logging
import unittest
import contextlib
from unittest import mock

from dbmeter.support.testing import async_test
from dbmeter.registers import Filter, Variant
from dbmeter.bus.simulation import SimulatedI2CBus
from dbmeter.device import DecibelMeter
from dbmeter.cli import (
    SubjectFilter, create_argparser, simulated_meter, run_operation, log_levels, main,
)


class ArgumentParserTestCase(unittest.TestCase):
    def parse(self, *argv):
        with contextlib.redirect_stderr(io.StringIO()):
            return create_argparser().parse_args(argv)

    def test_defaults(self):
        with mock.patch.dict(os.environ, clear=True):
            args = self.parse("measure")
        self.assertEqual(args.bus, 1)
        self.assertEqual(args.address, 0x48)
        self.assertIsNone(args.simulate)

    def test_environment(self):
        with mock.patch.dict(os.environ, {"DBMETER_I2C_BUS": "4", "DBMETER_I2C_ADDRESS": "0x49"}):
            args = self.parse("measure")
            self.assertEqual((args.bus, args.address), (4, 0x49))
            args = self.parse("-b", "0", "-a", "72", "measure")
            self.assertEqual((args.bus, args.address), (0, 0x48))

    def test_invalid_address(self):
        for address in ("0x80", "0x03", "foo"):
            with self.assertRaises(SystemExit):
                self.parse("-a", address, "measure")

    def test_configure(self):
        args = self.parse("configure", "-f", "c", "-t", "0x200")
        self.assertEqual(args.filter, "c")
        self.assertEqual(args.averaging_time, 0x200)
        with self.assertRaises(SystemExit):
            self.parse("configure", "-t", "65536")
        with self.assertRaises(SystemExit):
            self.parse("configure", "-f", "b")

    def test_log(self):
        args = self.parse("log", "-i", "0.5", "csv", "--dialect", "unix", os.devnull)
        self.assertEqual(args.interval, 0.5)
        self.assertEqual(args.data_logger, "csv")
        self.assertEqual(args.dialect, "unix")
        args.csv_file.close()

    def test_log_interval(self):
        for interval in ("0", "0.0", "-1", "-0.5", "nan", "soon"):
            with self.assertRaises(SystemExit):
                self.parse("log", "-i", interval)
        self.assertEqual(self.parse("log", "-i", "1e-3").interval, 0.001)


class RunOperationTestCase(unittest.TestCase):
    def setUp(self):
        self.model = simulated_meter(Variant.SPECTRUM)
        self.bus   = SimulatedI2CBus({0x48: self.model})
        self.meter = DecibelMeter(self.bus, 0x48)

    async def run_operation(self, *argv):
        args = create_argparser().parse_args(argv)
        stdout = io.StringIO()
        with contextlib.redirect_stdout(stdout):
            await run_operation(self.meter, args)
        return stdout.getvalue().splitlines()

    @async_test
    async def test_identify(self):
        self.assertEqual(await self.run_operation("identify"), [
            "address : 0x48",
            "version : 0x32",
            "variant : spectrum",
        ])

    @async_test
    async def test_measure(self):
        self.assertEqual(await self.run_operation("measure"), [
            "level   :  46 dB",
            "minimum :  45 dB",
            "maximum :  61 dB",
        ])

    @async_test
    async def test_history(self):
        lines = await self.run_operation("history")
        self.assertEqual(len(lines), 6)
        self.assertEqual(lines[0], "  0 :  46 dB")
        self.assertEqual(lines[-1], "  5 :  47 dB")

    @async_test
    async def test_spectrum(self):
        lines = await self.run_operation("spectrum", "--bins", "16")
        self.assertEqual(len(lines), 16)
        self.assertEqual(lines[0], "     0-500    Hz :  70 dB")
        self.assertEqual(len(await self.run_operation("spectrum")), 64)

    @async_test
    async def test_configure(self):
        await self.run_operation("configure", "-f", "none", "-t", "250")
        self.assertEqual(self.model.filter, Filter.NONE)
        self.assertEqual(self.model.tavg, 250)

    @async_test
    async def test_clear(self):
        await self.run_operation("clear", "history")
        self.assertEqual(self.model.history, bytes(100))

    @async_test
    async def test_power(self):
        await self.run_operation("power", "down")
        self.assertTrue(self.model.powered_down)
        await self.run_operation("power", "up")
        self.assertFalse(self.model.powered_down)


class MainTestCase(unittest.TestCase):
    def setUp(self):
        root_logger = logging.getLogger()
        handlers, level = list(root_logger.handlers), root_logger.level
        def restore():
            root_logger.handlers[:] = handlers
            root_logger.setLevel(level)
        self.addCleanup(restore)

    @async_test
    async def test_simulate(self):
        stdout = io.StringIO()
        with contextlib.redirect_stdout(stdout):
            self.assertEqual(await main(["-q", "--simulate", "regular", "identify"]), 0)
        self.assertIn("variant : regular", stdout.getvalue())

    @async_test
    async def test_unsupported(self):
        with contextlib.redirect_stderr(io.StringIO()):
            self.assertEqual(await main(["--simulate", "regular", "spectrum"]), 1)

    @async_test
    async def test_bus_error(self):
        with contextlib.redirect_stderr(io.StringIO()):
            self.assertEqual(await main(["-q", "-q", "-b", "4095", "identify"]), 1)


class LogLevelsTestCase(unittest.TestCase):
    def setUp(self):
        self.model = simulated_meter(Variant.REGULAR)
        self.bus   = SimulatedI2CBus({0x48: self.model})
        self.meter = DecibelMeter(self.bus, 0x48)

    def parse(self, *argv):
        return create_argparser().parse_args(["log", "-i", "0.01", *argv])

    async def run_until_lines(self, coro, count):
        stdout = io.StringIO()
        with contextlib.redirect_stdout(stdout):
            task = asyncio.create_task(coro)
            for _ in range(500):
                if len(stdout.getvalue().splitlines()) >= count:
                    break
                await asyncio.sleep(0.01)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task
        return stdout.getvalue().splitlines()

    @async_test
    async def test_stdout(self):
        lines = await self.run_until_lines(run_operation(self.meter, self.parse()), 3)
        self.assertGreaterEqual(len(lines), 3)
        for line in lines:
            self.assertRegex(line, r"^\[\d{8}T\d{6}Z\] L\(dB\)=46, Lmin\(dB\)=45, Lmax\(dB\)=61$")

    @async_test
    async def test_config(self):
        lines = await self.run_until_lines(
            run_operation(self.meter, self.parse("-f", "c", "-t", "250")), 1)
        self.assertEqual(self.model.filter, Filter.C_WEIGHTING)
        self.assertEqual(self.model.tavg, 250)
        self.assertTrue(lines)

    @async_test
    async def test_error_continues(self):
        self.bus.fail_next()
        with self.assertLogs("dbmeter.cli", level=logging.ERROR) as cm:
            lines = await self.run_until_lines(log_levels(self.meter, self.parse()), 2)
        self.assertIn("injected fault", cm.records[0].getMessage())
        self.assertGreaterEqual(len(lines), 2)
        self.assertTrue(lines[0].endswith("L(dB)=46, Lmin(dB)=45, Lmax(dB)=61"))


class SubjectFilterTestCase(unittest.TestCase):
    def record(self, level, msg):
        return logging.LogRecord("dbmeter.device", level, __file__, 1, msg, (), None)

    def test_raise_to_info(self):
        subject_filter = SubjectFilter(logging.INFO, ["DBMETER"])
        self.assertTrue(subject_filter.filter(
            self.record(logging.TRACE, "DBMETER: reg=0x00 read=0x31")))
        self.assertFalse(subject_filter.filter(
            self.record(logging.TRACE, "I2C: addr=0x48 reg=0x14")))
        self.assertFalse(subject_filter.filter(
            self.record(logging.DEBUG, "DBMETERX: reg=0x00")))
        self.assertTrue(subject_filter.filter(
            self.record(logging.WARNING, "history is empty")))

    def test_quiet(self):
        subject_filter = SubjectFilter(logging.WARNING, ["DBMETER"])
        self.assertFalse(subject_filter.filter(
            self.record(logging.TRACE, "DBMETER: reg=0x00 read=0x31")))
        self.assertTrue(subject_filter.filter(
            self.record(logging.WARNING, "history is empty")))

    def test_no_subjects(self):
        subject_filter = SubjectFilter(logging.INFO, None)
        self.assertFalse(subject_filter.filter(
            self.record(logging.DEBUG, "DBMETER: reg=0x00 read=0x31")))
        self.assertTrue(subject_filter.filter(self.record(logging.INFO, "cleared history")))
