"""Tests for errors.py exception taxonomy."""

from errors import (
    ApplyError,
    AtomicApplyError,
    BackupError,
    ConfigError,
    ConvergenceFailureError,
    ConvergenceTimeoutError,
    ManifestParseError,
    ResourceMappingError,
    RollbackError,
)
from manifest import ResourceIdentity

WEB = ResourceIdentity('apps', 'Deployment', 'default', 'web')


class TestErrorCodes:
    """Each stage has its own code."""

    def test_codes(self):
        assert ManifestParseError('bad').code == 'E100'
        assert ResourceMappingError('v1', 'Widget').code == 'E200'
        assert BackupError(WEB, 'boom').code == 'E201'
        assert ApplyError(WEB, 'rejected').code == 'E300'
        assert ConvergenceTimeoutError([], [], 'deadline exceeded').code == 'E400'
        assert ConvergenceFailureError('failed').code == 'E401'
        assert RollbackError(WEB, 'restore', 'conflict').code == 'E500'
        assert ConfigError('bad').code == 'E600'

    def test_all_subclass_base(self):
        for error in (ManifestParseError('x'), ApplyError(WEB, 'x'), ConfigError('x')):
            assert isinstance(error, AtomicApplyError)

    def test_str_includes_code(self):
        assert str(ConfigError('bad timeout')) == 'E600: bad timeout'


class TestRollbackTrigger:
    """Only apply and wait errors trigger rollback."""

    def test_triggers(self):
        assert ApplyError.triggers_rollback
        assert ConvergenceTimeoutError.triggers_rollback
        assert ConvergenceFailureError.triggers_rollback

    def test_non_triggers(self):
        assert not ManifestParseError.triggers_rollback
        assert not ResourceMappingError.triggers_rollback
        assert not BackupError.triggers_rollback
        assert not RollbackError.triggers_rollback


class TestMessages:
    """Tests for error message content."""

    def test_manifest_parse_error_source(self):
        error = ManifestParseError('invalid YAML', source='app.yaml')
        assert error.message == 'app.yaml: invalid YAML'
        assert error.source == 'app.yaml'

    def test_mapping_error(self):
        error = ResourceMappingError('example.com/v1', 'Widget', 'no matches for kind')
        assert 'Widget' in error.message
        assert 'no matches for kind' in error.message

    def test_apply_error_names_identity(self):
        error = ApplyError(WEB, 'forbidden')
        assert error.message == 'apply failed for Deployment.apps default/web: forbidden'
        assert error.identity == WEB

    def test_timeout_lists_facts_then_deadline(self):
        error = ConvergenceTimeoutError(
            [WEB],
            ['resource not ready: Deployment.apps default/web (InProgress)'],
            'wait aborted: deadline exceeded',
        )
        lines = error.message.split('\n')
        assert lines == [
            'resource not ready: Deployment.apps default/web (InProgress)',
            'wait aborted: deadline exceeded',
        ]
        assert error.not_ready == [WEB]

    def test_rollback_error_keeps_trigger(self):
        trigger = ApplyError(WEB, 'rejected')
        error = RollbackError(WEB, 'delete', 'forbidden', trigger=trigger)
        assert error.trigger is trigger
        assert 'manual intervention required' in error.message
