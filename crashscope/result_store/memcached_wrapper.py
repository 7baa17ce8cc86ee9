import time
import traceback
from pymemcache.client.base import Client as CMClient
from pymemcache.client.base import PooledClient as CMPooledClient
from pymemcache import serde as CMSerde
from pymemcache.exceptions import MemcacheError

import crashscope.utils.logger as log
from crashscope.utils.exceptions import ResultStoreOPFailed

MC_CONNECT_TIMEOUT = 5
MC_CMD_TIMEOUT = 5
MC_CMD_RETRY_TIMES = 5

# errors after which the command is worth another try
MC_RETRY_ERRORS = (MemcacheError, OSError)

def timeit(func):
    """Decorator that prints the time a function takes to execute."""
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        result = func(*args, **kwargs)
        log.time_logger.info(f"elapsed_time.store.memcached_wrapper.{func.__name__}:{time.perf_counter() - start_time}")
        return result
    return wrapper

def setup_memcached_client(host, port):
    msg = f"setup memcached client: {host} {port}"
    log.global_logger.debug(msg)

    return CMClient((host, int(port)), serde=CMSerde.compressed_serde, connect_timeout=MC_CONNECT_TIMEOUT, timeout=MC_CMD_TIMEOUT, no_delay=True)

def setup_memcached_pooled_client(host, port):
    msg = f"setup pooled memcached client: {host} {port}"
    log.global_logger.debug(msg)

    return CMPooledClient((host, int(port)), serde=CMSerde.compressed_serde, connect_timeout=MC_CONNECT_TIMEOUT, timeout=MC_CMD_TIMEOUT, no_delay=True)

def _retry(op_name, fn, accept=None):
    '''
    Call fn until it succeeds, at most MC_CMD_RETRY_TIMES times.
    accept(ret) decides whether a return value counts as success.
    '''
    retry_times = MC_CMD_RETRY_TIMES
    while retry_times > 0:
        retry_times -= 1
        try:
            ret = fn()
            if accept is None or accept(ret):
                return ret
            msg = f"mc {op_name} returned {ret} at the {MC_CMD_RETRY_TIMES-retry_times}-th try"
            log.global_logger.error(msg)
        except MC_RETRY_ERRORS as e:
            msg = f"mc {op_name} exception: {e} at the {MC_CMD_RETRY_TIMES-retry_times}-th try"
            log.global_logger.error(msg)
        finally:
            log.flush_all()

    msg = f"{traceback.format_exc()}\nmc {op_name} failed after trying {MC_CMD_RETRY_TIMES} times"
    log.global_logger.error(msg)
    raise ResultStoreOPFailed(msg)

def _reconnect(mc_client):
    # the connection will be reestablished when issuing the next command
    mc_client.close()

@timeit
def mc_set_wrapper(mc_client, key, value, noreply=False):
    def fn():
        ret = mc_client.set(key, value, noreply=noreply)
        if not ret:
            _reconnect(mc_client)
        return ret
    return _retry('set', fn, accept=lambda ret: bool(ret))

@timeit
def mc_get_wrapper(mc_client, key, default_ret=None):
    return _retry('get', lambda: mc_client.get(key, default=default_ret))

@timeit
def mc_add_wrapper(mc_client, key, value, noreply=False):
    ''' return False if the key exists '''
    return _retry('add', lambda: mc_client.add(key, value, noreply=noreply))

@timeit
def mc_incr_wrapper(mc_client, key, num):
    ''' incr a counter, create it first if it does not exist '''
    mc_add_wrapper(mc_client, key, 0)
    return _retry('incr', lambda: mc_client.incr(key, num), accept=lambda ret: ret is not None)
