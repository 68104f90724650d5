import functools
import inspect
import pickle
import unittest

import adb_host.exceptions


class TestExceptionSerialization(unittest.TestCase):
    def __test_serialize_one_exc_cls(exc_cls):
        # Work out how many args we need to instantiate this object
        try:
            exc_required_arity = len(inspect.getfullargspec(exc_cls.__init__).args)
        except TypeError:
            # A slot wrapper means that `__init__` wasn't overridden by the exception subclass
            exc_required_arity = 0
        # Don't try to provide `self` - we assume strings will be fine here
        fake_args = ("foo", ) * (exc_required_arity - 1)
        # Instantiate the exception object and then attempt a serializion cycle
        # using `pickle` - we mainly care about whether this blows up or not
        exc_obj = exc_cls(*fake_args)
        pickled_exc_data = pickle.dumps(exc_obj)
        depickled_exc_obj = pickle.loads(pickled_exc_data)
        assert type(depickled_exc_obj) is exc_cls

    for __obj in adb_host.exceptions.__dict__.values():
        if isinstance(__obj, type) and issubclass(__obj, BaseException):
            __test_method = functools.partial(
                __test_serialize_one_exc_cls, __obj
            )
            __test_name = "test_serialize_{}".format(__obj.__name__)
            locals()[__test_name] = __test_method


class TestExceptionMessages(unittest.TestCase):
    def test_command_failure_message_is_the_reason(self):
        """The message of a rejection is exactly the reason sent by the peer."""
        self.assertEqual(str(adb_host.exceptions.AdbCommandFailureException('device not found')), 'device not found')

    def test_transfer_error_is_oserror(self):
        self.assertTrue(issubclass(adb_host.exceptions.AdbTransferError, OSError))
