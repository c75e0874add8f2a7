import unittest

from test_utils import run_script, HELLO_ACCENT

from utfhate import (
    Config, ConfigurationError, CountCommand, DeleteCommand, ReplaceCommand, SearchCommand,
    build_config, parse_config,
)

class TestInputValidation(unittest.TestCase):

    def assertUsageError(self, result, message):
        self.assertEqual(result.returncode, 2)
        self.assertIn(b"usage: utfhate", result.stdout)
        self.assertIn(message, result.stderr)

    def test_replacement_too_long(self):
        result = run_script(["replace", "ab"], stdin_data=HELLO_ACCENT)
        self.assertUsageError(result, b"exactly one byte")

    def test_replacement_empty(self):
        result = run_script(["replace", ""], stdin_data=HELLO_ACCENT)
        self.assertUsageError(result, b"exactly one byte")

    def test_replacement_multibyte(self):
        result = run_script(["replace", "é"], stdin_data=HELLO_ACCENT)
        self.assertUsageError(result, b"got 2 byte(s)")

    def test_replacement_missing(self):
        result = run_script(["replace"], stdin_data=HELLO_ACCENT)
        self.assertEqual(result.returncode, 2)
        self.assertIn(b"usage:", result.stdout)

    def test_invalid_count_mode(self):
        result = run_script(["count", "words"], stdin_data=HELLO_ACCENT)
        self.assertUsageError(result, b"invalid choice: 'words'")

    def test_unknown_option(self):
        result = run_script(["--bogus"], stdin_data=HELLO_ACCENT)
        self.assertUsageError(result, b"unrecognized arguments")

    def test_unknown_command(self):
        result = run_script(["frobnicate"], stdin_data=HELLO_ACCENT)
        self.assertUsageError(result, b"invalid choice: 'frobnicate'")

    def test_buffer_size_too_small(self):
        result = run_script(["--buffer-size", "1"], stdin_data=HELLO_ACCENT)
        self.assertUsageError(result, b"buffer size must be at least 2")

    def test_invalid_log_level(self):
        result = run_script(["--log-level", "VERY_VERBOSE"])
        self.assertUsageError(result, b"invalid choice: 'VERY_VERBOSE'")

    def test_no_output_on_configuration_error(self):
        result = run_script(["replace", "ab"], stdin_data=HELLO_ACCENT)
        self.assertNotIn(b"h?llo", result.stdout)


class TestParseConfig(unittest.TestCase):

    def test_default_is_search(self):
        self.assertEqual(parse_config([]), Config())
        self.assertIsInstance(parse_config([]).command, SearchCommand)

    def test_commands(self):
        self.assertEqual(parse_config(["delete"]).command, DeleteCommand())
        self.assertEqual(parse_config(["replace", "?"]).command, ReplaceCommand(b"?"))
        self.assertEqual(parse_config(["count"]).command, CountCommand("chars"))
        self.assertEqual(parse_config(["count", "both"]).command, CountCommand("both"))

    def test_global_options_before_or_after_command(self):
        self.assertTrue(parse_config(["-v", "count"]).verbose)
        self.assertTrue(parse_config(["count", "-v"]).verbose)
        self.assertFalse(parse_config(["count"]).verbose)
        self.assertEqual(parse_config(["count", "bytes", "--buffer-size", "64"]).buffer_size, 64)

    def test_config_is_immutable(self):
        config = parse_config(["delete"])
        with self.assertRaises(AttributeError):
            config.verbose = True

    def test_build_config_errors(self):
        with self.assertRaises(ConfigurationError):
            build_config("replace")
        with self.assertRaises(ConfigurationError):
            build_config("replace", replacement=b"\xff")
        with self.assertRaises(ConfigurationError):
            build_config("count", count_mode="lines")
        with self.assertRaises(ConfigurationError):
            build_config("translate")
        with self.assertRaises(ConfigurationError):
            parse_config(["replace", "xy"])

if __name__ == "__main__":
    unittest.main()
