
class ProvisionError(Exception):
    """Base of every fatal orchestration failure

    Arguments:
        message {string} -- Human readable reason

    Keyword Arguments:
        step {string} -- Name of the step that failed (default: {None})
        output {string} -- Captured output of the failing command (default: {""})
    """

    def __init__(self, message, step=None, output=""):
        Exception.__init__(self, message)
        self.message = message
        self.step = step
        self.output = output or ""

    def __str__(self):
        if self.step:
            return f"[{self.step}] {self.message}"
        return self.message


class PrerequisiteMissing(ProvisionError):
    pass


class ArtifactGenerationFailed(ProvisionError):
    pass


class ContainerStartFailed(ProvisionError):
    pass


class ReadinessTimeout(ProvisionError):
    pass


class ChannelOperationFailed(ProvisionError):
    def __init__(self, message, step=None, output="", joined=None):
        ProvisionError.__init__(self, message, step=step, output=output)
        self.joined = list(joined or [])


class ChaincodeError(ProvisionError):
    pass


class ChaincodePackageParseFailed(ChaincodeError):
    pass


class ChaincodeLifecycleStepFailed(ChaincodeError):
    pass


class ProvisionCancelled(ProvisionError):
    pass


class InvalidConfig(ProvisionError):
    pass


DeployError = ChaincodeError
