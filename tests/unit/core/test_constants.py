"""
core/constants.py 테스트

모든 경로가 pathlib.Path 타입이고, 상수가 정상적으로 접근 가능한지 확인
"""

from pathlib import Path

from core.constants import PROJECT_ROOT, ChainPrograms, Defaults, Paths, RpcDefaults


class TestProjectRoot:
    """PROJECT_ROOT 테스트"""

    def test_project_root_is_absolute_path(self) -> None:
        assert isinstance(PROJECT_ROOT, Path)
        assert PROJECT_ROOT.is_absolute()

    def test_project_root_contains_core_directory(self) -> None:
        """PROJECT_ROOT에 core 디렉토리가 있는지 확인"""
        assert (PROJECT_ROOT / "core").exists()


class TestChainPrograms:
    """체인 프로그램 식별자"""

    def test_system_program(self) -> None:
        assert ChainPrograms.SYSTEM_PROGRAM_ID == "11111111111111111111111111111111"

    def test_erc20_transfer_topic(self) -> None:
        """keccak256("Transfer(address,address,uint256)")"""
        assert ChainPrograms.ERC20_TRANSFER_TOPIC.startswith("0xddf252ad")
        assert len(ChainPrograms.ERC20_TRANSFER_TOPIC) == 66


class TestDefaults:
    """기본값 상수"""

    def test_poll_intervals(self) -> None:
        assert Defaults.EVM_POLL_INTERVAL_SEC == 30
        assert Defaults.SOLANA_POLL_INTERVAL_SEC == 15

    def test_page_size(self) -> None:
        assert Defaults.PAGE_SIZE == 1000

    def test_rpc_defaults_positive(self) -> None:
        assert RpcDefaults.MAX_RETRIES > 0
        assert RpcDefaults.TIMEOUT_SEC > 0


class TestPaths:
    """경로 상수"""

    def test_all_paths_are_path_objects(self) -> None:
        for name in ("CONFIG_DIR", "DATA_DIR", "LOGS_DIR", "MONITOR_LOGS_DIR", "CONFIG_FILE", "DEFAULT_DB"):
            assert isinstance(getattr(Paths, name), Path)

    def test_config_file_under_config_dir(self) -> None:
        assert Paths.CONFIG_FILE.parent == Paths.CONFIG_DIR
