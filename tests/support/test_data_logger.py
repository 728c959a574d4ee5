import io
import logging
import argparse
import unittest
from unittest import mock

from dbmeter.support.testing import async_test
from dbmeter.support.data_logger import DataLogger


FIELD_NAMES = dict(level="L(dB)", min="Lmin(dB)")


def parse(*argv):
    parser = argparse.ArgumentParser()
    DataLogger.add_subparsers(parser)
    return parser.parse_args(argv)


class DataLoggerTestCase(unittest.TestCase):
    logger = logging.getLogger(__name__)

    def test_registered(self):
        self.assertEqual(set(DataLogger.all_data_loggers),
                         {"stdout", "csv", "influxdb", "influxdb2"})

    @async_test
    async def test_stdout(self):
        data_logger = await DataLogger(self.logger, parse(), field_names=FIELD_NAMES)
        data_logger.stream = io.StringIO()
        await data_logger.report_data(dict(level=52, min=40), timestamp=0)
        self.assertEqual(data_logger.stream.getvalue(),
                         "[19700101T000000Z] L(dB)=52, Lmin(dB)=40\n")

    @async_test
    async def test_csv(self):
        args = parse("csv", "-")
        args.csv_file = io.StringIO()
        data_logger = await DataLogger(self.logger, args, field_names=FIELD_NAMES)
        await data_logger.report_data(dict(level=52, min=40), timestamp=60)
        self.assertEqual(args.csv_file.getvalue(),
                         "t(UTC),L(dB),Lmin(dB)\r\n"
                         "1970-01-01 00:01:00,52,40\r\n")

    @async_test
    async def test_report_error(self):
        data_logger = await DataLogger(self.logger, parse(), field_names=FIELD_NAMES)
        with self.assertLogs(self.logger, level=logging.ERROR) as cm:
            await data_logger.report_error("sample {} failed", 3)
        self.assertEqual(cm.records[0].getMessage(), "sample 3 failed")


class InfluxDBDataLoggerTestCase(unittest.TestCase):
    logger = logging.getLogger(__name__)

    def setUp(self):
        patcher = mock.patch("aiohttp.ClientSession")
        self.ClientSession = patcher.start()
        self.addCleanup(patcher.stop)

    @async_test
    async def test_influxdb(self):
        args = parse("influxdb", "http://localhost:8086", "noise", "-r", "week",
                     "sound", "-t", "room=lab 1", "-p", "s", "--batch-size", "2")
        data_logger = await DataLogger(self.logger, args, field_names=FIELD_NAMES)
        self.assertEqual(str(data_logger.url),
                         "http://localhost:8086/write?db=noise&rp=week&precision=s")
        self.assertEqual(data_logger.series, r"sound,room=lab\ 1")
        self.assertEqual(data_logger.headers, {})
        self.assertEqual(data_logger._format_point(dict(level=52, error=False), 1.5),
                         r"sound,room=lab\ 1 level=52i,error=false 1")

    @async_test
    async def test_influxdb2(self):
        args = parse("influxdb2", "https://influx.example", "acme", "meters", "sound",
                     "-p", "ms", "--token", "s3cret")
        data_logger = await DataLogger(self.logger, args, field_names=FIELD_NAMES)
        self.assertEqual(str(data_logger.url),
                         "https://influx.example/api/v2/write?org=acme&bucket=meters&precision=ms")
        self.assertEqual(data_logger.headers, {"Authorization": "Token s3cret"})
        self.assertEqual(data_logger._format_point(dict(note='say "hi"'), 2.0),
                         'sound note="say \\"hi\\"" 2000')

    @async_test
    async def test_batching(self):
        args = parse("influxdb", "http://localhost:8086", "noise", "sound", "-p", "s",
                     "--batch-size", "2")
        data_logger = await DataLogger(self.logger, args, field_names=FIELD_NAMES)
        posted = []
        async def flush():
            posted.append(list(data_logger._queue))
            data_logger._queue.clear()
        data_logger._flush = flush
        await data_logger.report_data(dict(level=50, min=40), timestamp=1)
        self.assertEqual(posted, [])
        await data_logger.report_data(dict(level=51, min=40), timestamp=2)
        self.assertEqual(posted, [[
            "sound error=false,level=50i,min=40i 1",
            "sound error=false,level=51i,min=40i 2",
        ]])
