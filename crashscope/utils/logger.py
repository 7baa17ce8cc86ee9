import logging, logging.handlers
import pytz
from datetime import datetime

global_logger = logging.getLogger("global_logger")
time_logger = logging.getLogger("time_logger")
debug = False
log_timezone = pytz.timezone('US/Eastern')

LOG_FORMAT = '%(levelname)s: (%(module)s:%(lineno)d,%(asctime)s.%(msecs)03d) - %(message)s'
LOG_DATE_FORMAT = '%Y%m%d-%H:%M:%S'

def posix2local(timestamp):
    """Seconds since the epoch -> time in the logging time zone as an aware datetime object."""
    return datetime.fromtimestamp(timestamp, log_timezone)

class TZConvertFormatter(logging.Formatter):
    def converter(self, timestamp):
        return posix2local(timestamp)

    def formatTime(self, record, datefmt=None):
        dt = self.converter(record.created)
        if datefmt:
            s = dt.strftime(datefmt)
        else:
            t = dt.strftime(self.default_time_format)
            s = self.default_msec_format % (t, record.msecs)
        return s

def setup_global_logger(fname=None, file_lv=40,
                        stm=None, stm_lv=50,
                        file_mode='a',
                        time_fname=None, time_file_mode='a',
                        host=None, port=None,
                        tz_name=None):
    global global_logger, time_logger, debug, log_timezone

    if tz_name:
        log_timezone = pytz.timezone(tz_name)

    global_logger.setLevel(min(file_lv, stm_lv))

    if min(file_lv, stm_lv) <= 10:
        debug = True

    formatter = TZConvertFormatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if fname:
        file_handler = logging.FileHandler(fname, mode=file_mode)
        file_handler.setLevel(file_lv)
        file_handler.setFormatter(formatter)
        global_logger.addHandler(file_handler)

    if stm:
        stream_handler = logging.StreamHandler(stm)
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(stm_lv)
        global_logger.addHandler(stream_handler)

    time_logger.setLevel(logging.INFO)
    if time_fname:
        file_handler = logging.FileHandler(time_fname, mode=time_file_mode)
        file_handler.setFormatter(formatter)
        time_logger.addHandler(file_handler)
    elif fname:
        file_handler = logging.FileHandler(fname, mode=file_mode)
        file_handler.setFormatter(formatter)
        time_logger.addHandler(file_handler)

    if host and port:
        # timing records of several checking hosts can be collected by one receiver
        socketHandler = logging.handlers.SocketHandler(host, port)
        socketHandler.setLevel(logging.INFO)
        time_logger.addHandler(socketHandler)

def close_all():
    global global_logger, time_logger

    for logger in (global_logger, time_logger):
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)

def flush_all():
    global global_logger, time_logger

    for handler in global_logger.handlers:
        handler.flush()
    for handler in time_logger.handlers:
        handler.flush()
