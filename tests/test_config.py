import json
import os
import shutil
import tempfile
from pathlib import Path
from unittest.mock import patch

from reqprof.config import (
    ProfilerConfig,
    ReqProfConfig,
    load_config_if_exists,
    merge_config_with_args,
)
from reqprof.controller import DEFAULT_ENV_DIRECTIVE
from reqprof.engine import get_default_engine
from reqprof.hooks import noop_hook
from reqprof.identity import default_generate_id
from reqprof.paths import DEFAULT_NULL_FILE_NAME, PROFILE_ID
from reqprof.policy import always, never
from reqprof.report import DEFAULT_REPORT_COMMAND

from .base import TestBase
from .fakes import RecordingEngine, make_environ


class TestReqProfConfig(TestBase):
    """Test cases for the rc file handling."""

    def setUp(self):
        super().setUp()
        self.quiet()
        self.temp_dir = tempfile.mkdtemp()
        self.config_dir = Path(self.temp_dir) / ".reqprof"
        self.config_file = self.config_dir / ".reqprofrc"

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)
        super().tearDown()

    def write_config(self, data) -> None:
        self.config_dir.mkdir(exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            if isinstance(data, str):
                f.write(data)
            else:
                json.dump(data, f)

    @patch("reqprof.config.Path.home")
    def test_get_config_path(self, mock_home):
        mock_home.return_value = Path(self.temp_dir)
        config = ReqProfConfig()
        self.assertEqual(config.config_path, Path(self.temp_dir) / ".reqprof" / ".reqprofrc")

    @patch("reqprof.config.Path.home")
    def test_load_config_file_not_exists(self, mock_home):
        mock_home.return_value = Path(self.temp_dir)
        self.assertEqual(ReqProfConfig().load_config(), {})

    @patch("reqprof.config.Path.home")
    def test_load_config_valid_json(self, mock_home):
        mock_home.return_value = Path(self.temp_dir)
        test_config = {"result_dir": "profiles", "args": ["--width", "800"]}
        self.write_config(test_config)
        self.assertEqual(ReqProfConfig().load_config(), test_config)

    @patch("reqprof.config.Path.home")
    def test_load_config_invalid_json(self, mock_home):
        """Invalid JSON is reported and ignored."""
        mock_home.return_value = Path(self.temp_dir)
        self.write_config("{ invalid json }")
        self.assertEqual(ReqProfConfig().load_config(), {})

    @patch("reqprof.config.Path.home")
    def test_load_config_not_dict(self, mock_home):
        mock_home.return_value = Path(self.temp_dir)
        self.write_config([1, 2, 3])
        self.assertEqual(ReqProfConfig().load_config(), {})

    def test_middleware_options(self):
        config = ReqProfConfig()
        options = config.middleware_options(
            {
                "result_dir": "profiles",
                "report_timeout": 30,
                "verbose": True,
                "report_command": ["render"],
                "args": ["--width", "800"],
            }
        )
        self.assertEqual(
            options,
            {
                "result_dir": "profiles",
                "report_timeout": 30,
                "verbose": True,
                "report_command": ["render"],
            },
        )

    def test_middleware_options_skips_bad_entries(self):
        config = ReqProfConfig()
        options = config.middleware_options(
            {
                "enable_profile": "yes",  # not settable from a file
                "result_dir": 12,
                "report_timeout": True,
                "enable_reporting": "false",
                "null_file_name": "null.out",
            }
        )
        self.assertEqual(options, {"null_file_name": "null.out"})

    def test_merge_with_args_empty_config(self):
        cmd_args = ["-f", "a.out"]
        self.assertEqual(ReqProfConfig().merge_with_args({}, cmd_args), cmd_args)

    def test_merge_with_args_with_config_args(self):
        config = ReqProfConfig()
        result = config.merge_with_args({"args": ["--width", "800"]}, ["-f", "a.out"])
        self.assertEqual(result, ["--width", "800", "-f", "a.out"])

    def test_merge_with_args_command_line_precedence(self):
        """Both are kept, argparse uses the last one."""
        config = ReqProfConfig()
        result = config.merge_with_args({"args": ["--width", "800"]}, ["--width", "900"])
        self.assertEqual(result, ["--width", "800", "--width", "900"])

    def test_merge_with_args_invalid_args_type(self):
        config = ReqProfConfig()
        result = config.merge_with_args({"args": "--width 800"}, ["-f", "a.out"])
        self.assertEqual(result, ["-f", "a.out"])

    def test_merge_with_args_no_args_key(self):
        config = ReqProfConfig()
        result = config.merge_with_args({"result_dir": "profiles"}, ["-f", "a.out"])
        self.assertEqual(result, ["-f", "a.out"])

    @patch("reqprof.config.Path.home")
    def test_create_example_config(self, mock_home):
        mock_home.return_value = Path(self.temp_dir)
        ReqProfConfig().create_example_config()

        self.assertTrue(self.config_file.exists())
        with open(self.config_file, encoding="utf-8") as f:
            data = json.load(f)
        self.assertIsInstance(data["args"], list)
        self.assertEqual(data["env_directive"], DEFAULT_ENV_DIRECTIVE)
        # every option in the example is accepted back
        options = ReqProfConfig().middleware_options(data)
        self.assertEqual(set(options), set(data) - {"args"})

    @patch("reqprof.config.Path.home")
    @patch("reqprof.config.input")
    def test_create_example_config_overwrite_yes(self, mock_input, mock_home):
        mock_home.return_value = Path(self.temp_dir)
        mock_input.return_value = "y"
        self.write_config({"args": ["--existing"]})

        ReqProfConfig().create_example_config()

        with open(self.config_file, encoding="utf-8") as f:
            data = json.load(f)
        self.assertNotEqual(data["args"], ["--existing"])

    @patch("reqprof.config.Path.home")
    @patch("reqprof.config.input")
    def test_create_example_config_overwrite_no(self, mock_input, mock_home):
        mock_home.return_value = Path(self.temp_dir)
        mock_input.return_value = "n"
        original = {"args": ["--existing"]}
        self.write_config(original)

        ReqProfConfig().create_example_config()

        with open(self.config_file, encoding="utf-8") as f:
            self.assertEqual(json.load(f), original)

    @patch("reqprof.config.ReqProfConfig.load_config")
    def test_load_config_if_exists(self, mock_load):
        mock_load.return_value = {"args": ["--verbose"]}
        self.assertEqual(load_config_if_exists(), {"args": ["--verbose"]})
        mock_load.assert_called_once()

    @patch("reqprof.config.ReqProfConfig.load_config")
    @patch("reqprof.config.ReqProfConfig.merge_with_args")
    def test_merge_config_with_args(self, mock_merge, mock_load):
        mock_load.return_value = {"args": ["--verbose"]}
        mock_merge.return_value = ["--verbose", "-f", "a.out"]

        result = merge_config_with_args(["-f", "a.out"])

        self.assertEqual(result, ["--verbose", "-f", "a.out"])
        mock_merge.assert_called_once_with({"args": ["--verbose"]}, ["-f", "a.out"])


class TestProfilerConfig(TestBase):
    def test_defaults(self):
        config = ProfilerConfig()
        self.assertIs(config.enable_profile, always)
        self.assertTrue(config.enable_reporting)
        self.assertEqual(config.env_directive, DEFAULT_ENV_DIRECTIVE)
        self.assertEqual(config.null_file_name, DEFAULT_NULL_FILE_NAME)
        self.assertIs(config.generate_id, default_generate_id)
        self.assertIs(config.before_profile, noop_hook)
        self.assertIs(config.after_profile, noop_hook)
        self.assertIs(config.engine, get_default_engine())
        self.assertEqual(config.report_command, DEFAULT_REPORT_COMMAND)
        self.assertIsNone(config.report_timeout)
        self.assertFalse(config.verbose)

    def test_default_paths(self):
        paths = ProfilerConfig().paths
        environ = make_environ()
        environ[PROFILE_ID] = "7"
        self.assertEqual(paths.result_file_path(environ), os.path.join(".", "reqprof.7.out"))
        self.assertEqual(paths.null_file_path(environ), os.path.join(".", "reqprof.null.out"))
        self.assertEqual(paths.report_dir_path(environ), "report")

    def test_string_and_callable_paths(self):
        config = ProfilerConfig(
            result_dir="/var/prof",
            result_file_name=lambda environ: f"{environ['PATH_INFO'].strip('/')}.out",
            report_dir=lambda environ: "/var/report",
        )
        environ = make_environ("/users")
        self.assertEqual(config.paths.result_file_path(environ), "/var/prof/users.out")
        self.assertEqual(config.paths.report_dir_path(environ), "/var/report")

    def test_read_only(self):
        config = ProfilerConfig()
        with self.assertRaises(AttributeError):
            config.verbose = True

    def test_keyword_only(self):
        with self.assertRaises(TypeError):
            ProfilerConfig(never)  # type: ignore[misc]

    def test_invalid_values(self):
        with self.assertRaises(ValueError):
            ProfilerConfig(report_timeout=0)
        with self.assertRaises(ValueError):
            ProfilerConfig(null_file_name="")
        with self.assertRaises(TypeError):
            ProfilerConfig(result_dir=12)  # type: ignore[arg-type]

    def test_replace(self):
        engine = RecordingEngine()
        config = ProfilerConfig(engine=engine, enable_profile=never)
        other = config.replace(verbose=True)
        self.assertTrue(other.verbose)
        self.assertFalse(config.verbose)
        self.assertIs(other.engine, engine)
        self.assertIs(other.enable_profile, never)

    @patch("reqprof.config.Path.home")
    def test_from_rc(self, mock_home):
        self.quiet()
        temp_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, temp_dir, True)
        mock_home.return_value = Path(temp_dir)
        config_dir = Path(temp_dir) / ".reqprof"
        config_dir.mkdir()
        with open(config_dir / ".reqprofrc", "w", encoding="utf-8") as f:
            json.dump({"result_dir": "/var/prof", "report_timeout": 30, "verbose": True}, f)

        config = ProfilerConfig.from_rc(verbose=False)
        self.assertEqual(config.report_timeout, 30)
        self.assertFalse(config.verbose)
        environ = make_environ()
        environ[PROFILE_ID] = "1"
        self.assertEqual(config.paths.result_file_path(environ), "/var/prof/reqprof.1.out")
