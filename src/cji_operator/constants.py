API_GROUP = "cloud.redhat.com"
API_VERSION = "v1alpha1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

KIND_INVOCATION = "ClowdJobInvocation"
KIND_APP = "ClowdApp"
KIND_ENVIRONMENT = "ClowdEnvironment"

PLURAL_INVOCATIONS = "clowdjobinvocations"
PLURAL_APPS = "clowdapps"
PLURAL_ENVIRONMENTS = "clowdenvironments"

MANAGER_NAME = "clowder-jobinvocation-operator"

# Label and annotation keys
LABEL_MANAGED_BY = f"{API_GROUP}/managed-by"
LABEL_OWNER_KIND = f"{API_GROUP}/owner-kind"
LABEL_OWNER_NAMESPACE = f"{API_GROUP}/owner-namespace"
LABEL_OWNER_NAME = f"{API_GROUP}/owner-name"
LABEL_OWNER_UID = f"{API_GROUP}/owner-uid"
LABEL_INVOCATION = "clowdjobinvocation"
LABEL_APP = "app"
LABEL_JOB = "job"
LABEL_VALUE_MAX_LENGTH = 63

ANNOTATION_RECONCILE_TRIGGER = f"{API_GROUP}/reconcile-trigger"

# Job condition types that end a Job for good
JOB_FINISHED_CONDITIONS = ("Complete", "Failed")

# App readiness condition types
COND_DEPLOYMENTS_READY = "DeploymentsReady"
COND_RECONCILIATION_SUCCESSFUL = "ReconciliationSuccessful"

# Config secret layout
APP_CONFIG_KEY = "cdappconfig.json"
AGGREGATED_CONFIG_KEY = "aggregated-config.json"
AGGREGATED_CONFIG_ROOT = "cdappconfigs"
APP_CONFIG_MOUNT_PATH = "/cdapp"
ENV_CONFIG_MOUNT_PATH = "/cdenv"
APP_CONFIG_VOLUME = "config-secret"
ENV_CONFIG_VOLUME = "cdenvconfig"

TEST_JOB_SUFFIX = "iqe"
TEST_CLUSTER_ROLE = "edit"

# Access levels read from ClowdEnvironment.spec.providers.testing
ACCESS_EDIT = "edit"
ACCESS_VIEW = "view"
CONFIG_ACCESS_ENVIRONMENT = "environment"
CONFIG_ACCESS_APP = "app"
CONFIG_ACCESS_NONE = "none"
