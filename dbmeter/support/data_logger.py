import argparse
import csv
import re
import sys
import time
import yarl
import aiohttp


__all__ = ["DataLogger"]


class DataLogger:
    """
    Destination for periodically sampled measurements.

    Each subclass registers itself under a name and contributes an argparse subcommand.
    Instances are created with ``await DataLogger(logger, args, field_names=...)``, which picks
    the subclass chosen on the command line (``stdout`` if none was).
    """

    all_data_loggers = {}

    def __init_subclass__(cls, name=None, **kwargs):
        super().__init_subclass__(**kwargs)
        if name is not None:
            cls.all_data_loggers[name] = cls

    help = "data logger help missing"
    description = "data logger description missing"

    @classmethod
    def add_subparsers(cls, parser):
        p_data_logger = parser.add_subparsers(dest="data_logger", metavar="DATA-LOGGER")
        for name, subcls in cls.all_data_loggers.items():
            p_data_logger_subcls = p_data_logger.add_parser(
                name, help=subcls.help, description=subcls.description)
            subcls.add_arguments(p_data_logger_subcls)

    @classmethod
    def add_arguments(cls, parser):
        pass

    async def __new__(cls, logger, args, **init_kwargs):
        subcls = cls.all_data_loggers[getattr(args, "data_logger", None) or "stdout"]
        data_logger = object.__new__(subcls)
        data_logger.__init__(logger, **init_kwargs)
        await data_logger.setup(args)
        return data_logger

    def __init__(self, logger, *, field_names):
        assert "timestamp" not in field_names
        self.logger      = logger
        self.field_names = field_names

    async def setup(self, args):
        pass

    async def report_data(self, fields, timestamp=None):
        raise NotImplementedError

    async def report_error(self, message, *args, exception=None, **kwargs):
        self.logger.error(str(message).format(*args, **kwargs), exc_info=exception)

    async def close(self):
        pass


class STDOUTDataLogger(DataLogger, name="stdout"):
    help = "log data to standard output"
    description = """
    Log data to standard output in a human-readable format.
    """

    async def setup(self, args):
        self.stream = sys.stdout

    async def report_data(self, fields, timestamp=None):
        values = ", ".join(f"{name}={fields[key]}" for key, name in self.field_names.items())
        stamp  = time.strftime("%Y%m%dT%H%M%SZ", time.gmtime(timestamp))
        self.stream.write(f"[{stamp}] {values}\n")
        self.stream.flush()


class CSVDataLogger(DataLogger, name="csv"):
    help = "log data to a CSV file"
    description = """
    Log data to a comma-separated value (CSV) file.
    """

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument(
            "--dialect", metavar="DIALECT", choices=csv.list_dialects(), default="excel",
            help="format CSV file according to DIALECT (default: %(default)s)")
        parser.add_argument(
            "csv_file", metavar="CSV-FILE", type=argparse.FileType("w"),
            help="write data to CSV-FILE")

    async def setup(self, args):
        self.file = args.csv_file
        self.csv_writer = csv.DictWriter(self.file, dialect=args.dialect,
                                         fieldnames=["timestamp", *self.field_names])
        self.csv_writer.writerow({"timestamp": "t(UTC)", **self.field_names})

    async def report_data(self, fields, timestamp=None):
        self.csv_writer.writerow({
            "timestamp": time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime(timestamp)),
            **fields
        })
        self.file.flush()

    async def close(self):
        self.file.close()


class _InfluxDBDataLogger(DataLogger):
    write_path = None

    _precision_scale = {
        "ns": 1e9,
        "us": 1e6,
        "ms": 1e3,
        "s":  1,
        "m":  1 / 60,
        "h":  1 / 3600,
    }

    @staticmethod
    def _escape_name(charset, value):
        return re.sub(r"([{}])".format(charset), r"\\\1", value)

    @staticmethod
    def _escape_value(value):
        # bool is a subclass of int, so it has to be checked first
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, int):
            return f"{value}i"
        if isinstance(value, float):
            return str(value)
        if isinstance(value, str):
            return '"' + re.sub(r"([\"\\])", r"\\\1", value) + '"'
        raise TypeError(f"cannot log value {value!r} to InfluxDB")

    @classmethod
    def _add_destination_arguments(cls, parser):
        raise NotImplementedError

    @classmethod
    def add_arguments(cls, parser):
        parser.add_argument(
            "endpoint", metavar="ENDPOINT", type=str,
            help=f"write to endpoint URL //ENDPOINT{cls.write_path}")
        cls._add_destination_arguments(parser)
        parser.add_argument(
            "measurement", metavar="SERIES", type=str,
            help="write to measurement SERIES")
        def tag(arg):
            if "=" not in arg:
                raise argparse.ArgumentTypeError(f"{arg} is not a valid tag")
            key, value = arg.split("=", 1)
            return key, value
        parser.add_argument(
            "-t", "--tag", metavar="TAG=VALUE", dest="tags", type=tag,
            action="append", default=[],
            help="attach TAG=VALUE to all data points")
        parser.add_argument(
            "-p", "--precision", metavar="PRECISION",
            choices=list(cls._precision_scale), required=True,
            help="set timestamp precision to PRECISION")
        parser.add_argument(
            "--batch-size", metavar="BATCH-SIZE", type=int, default=1,
            help="submit data in groups of BATCH-SIZE points (default: %(default)d)")

    def _url(self, args):
        raise NotImplementedError

    def _headers(self, args):
        return {}

    async def setup(self, args):
        self.url = yarl.URL(args.endpoint).with_path(self.write_path)
        self.url = self._url(args).update_query(precision=args.precision)
        self.headers = self._headers(args)
        self.series = ",".join([
            self._escape_name(", ", args.measurement),
            *[self._escape_name(",= ", key) + "=" + self._escape_name(",= ", value)
              for key, value in args.tags]
        ])
        self.precision   = args.precision
        self.session     = aiohttp.ClientSession()
        self._queue      = []
        self._batch_size = args.batch_size

    def _format_point(self, fields, timestamp):
        if timestamp is None:
            # Points in a batch share the series, so the server would collapse them into one
            # if it timestamped them on arrival.
            timestamp = time.time()
        return " ".join([
            self.series,
            ",".join(self._escape_name(",= ", key) + "=" + self._escape_value(value)
                     for key, value in fields.items()),
            str(int(timestamp * self._precision_scale[self.precision])),
        ])

    async def _flush(self):
        try:
            async with self.session.post(self.url, data="\n".join(self._queue),
                                         headers=self.headers) as response:
                if response.status not in range(200, 300):
                    self.logger.error("InfluxDB: write status=%d body=%s",
                                      response.status, (await response.text()).strip())
                self._queue.clear()
        except aiohttp.ClientError as error:
            # keep the queue; it will be retried together with the next batch
            self.logger.error("InfluxDB: http error=%s", str(error), exc_info=error)

    async def _report(self, fields, timestamp=None):
        point = self._format_point(fields, timestamp)
        self.logger.debug("InfluxDB: queue data=<%s>", point)
        self._queue.append(point)
        if len(self._queue) >= self._batch_size:
            await self._flush()

    async def report_data(self, fields, timestamp=None):
        assert set(fields) == set(self.field_names)
        await self._report({"error": False, **fields}, timestamp)

    async def report_error(self, message, *args, exception=None, **kwargs):
        await super().report_error(message, *args, **kwargs, exception=exception)
        await self._report({"error": True})

    async def close(self):
        if self._queue:
            await self._flush()
        await self.session.close()


class InfluxDBDataLogger(_InfluxDBDataLogger, name="influxdb"):
    help = "log data to an InfluxDB 1.x endpoint"
    description = """
    Log data to an InfluxDB 1.x endpoint over HTTP(S).
    """

    write_path = "/write"

    @classmethod
    def _add_destination_arguments(cls, parser):
        parser.add_argument(
            "database", metavar="DATABASE", type=str,
            help="write to database DATABASE")
        parser.add_argument(
            "-r", "--retention-policy", metavar="POLICY",
            help="write to retention policy POLICY")

    def _url(self, args):
        url = self.url.with_query(db=args.database)
        if args.retention_policy:
            url = url.update_query(rp=args.retention_policy)
        return url


class InfluxDB2DataLogger(_InfluxDBDataLogger, name="influxdb2"):
    help = "log data to an InfluxDB 2.x endpoint"
    description = """
    Log data to an InfluxDB 2.x endpoint over HTTP(S).
    """

    write_path = "/api/v2/write"

    @classmethod
    def _add_destination_arguments(cls, parser):
        parser.add_argument(
            "org", metavar="ORGANIZATION", type=str,
            help="write to organization ORGANIZATION (either the name or the id)")
        parser.add_argument(
            "bucket", metavar="BUCKET", type=str,
            help="write to bucket BUCKET")
        parser.add_argument(
            "--token", metavar="TOKEN", type=str, required=True,
            help="authenticate with TOKEN")

    def _url(self, args):
        return self.url.with_query(org=args.org, bucket=args.bucket)

    def _headers(self, args):
        return {"Authorization": f"Token {args.token}"}
