import pytest
from process_controller import ProcessController, ProcessControllerSettings


@pytest.fixture(params=[False, True], ids=["pipe", "file"])
def use_output_files(request) -> bool:
    """Run the test once per channel mode."""
    return request.param


@pytest.fixture
def settings(tmp_path) -> ProcessControllerSettings:
    """Settings keeping output files under the test's tmp_path."""
    return ProcessControllerSettings(temp_dir=tmp_path / "process-controller")


@pytest.fixture
def make_controller(use_output_files, settings):
    """Factory for controllers in the current channel mode, disposed after the test."""
    controllers: list[ProcessController] = []

    def _make(cmd, *args, **kwargs) -> ProcessController:
        kwargs.setdefault("use_output_files", use_output_files)
        kwargs.setdefault("settings", settings)
        controller = ProcessController(cmd, *args, **kwargs)
        controllers.append(controller)
        return controller

    yield _make

    for controller in controllers:
        controller.dispose()
