class PKIError(Exception):
    pass


class ConfigNotFound(PKIError):
    pass


class ConfigCorrupt(PKIError):
    pass


# CA, DH parameters or a certificate is missing
class MissingPrerequisite(PKIError):
    pass


class BackendFailure(PKIError):
    pass


class IOFailure(PKIError):
    pass


class ValidationFailure(PKIError):
    pass


class AlreadyExists(PKIError):
    pass
