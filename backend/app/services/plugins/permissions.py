"""
Plugin permission identifiers

Capability strings a plugin may declare in ``requiredPermissions``. Shared by
the manifest validator (whitelist and warnings) and the security scanner
(manifest sub-scan).
"""

VALID_PERMISSIONS = frozenset(
    [
        "btcpay.store.canviewinvoices",
        "btcpay.store.cancreateinvoice",
        "btcpay.store.canmodifyinvoices",
        "btcpay.store.candeleteinvoices",
        "btcpay.store.canviewstoresettings",
        "btcpay.store.canmodifystoresettings",
        "btcpay.store.canviewpaymentrequests",
        "btcpay.store.canmodifypaymentrequests",
        "btcpay.store.canviewpullpayments",
        "btcpay.store.cancreatepullpayments",
        "btcpay.store.cancreatepayout",
        "btcpay.store.canviewpayouts",
        "btcpay.store.canmodifypayouts",
        "btcpay.store.canviewcustodianaccounts",
        "btcpay.store.canmanagecustodianaccounts",
        "btcpay.store.candeposittocustodianaccounts",
        "btcpay.store.canwithdrawfromcustodianaccounts",
        "btcpay.store.cantradecustodianaccounts",
        "btcpay.user.canviewprofile",
        "btcpay.user.canmodifyprofile",
        "btcpay.user.canmanagenotificationsforuser",
        "btcpay.user.canviewnotificationsforuser",
        "btcpay.server.canviewusers",
        "btcpay.server.cancreateuser",
        "btcpay.server.candeleteuser",
        "btcpay.server.canmodifyserversettings",
        "btcpay.server.canviewserversettings",
        "btcpay.server.canuseinternallightningnode",
        "btcpay.server.cancreateinternallightningnode",
        "btcpay.server.canuseinternallightningnodeinstore",
    ]
)

# Server settings modification and user creation/deletion
DANGEROUS_PERMISSIONS = frozenset(
    [
        "btcpay.server.canmodifyserversettings",
        "btcpay.server.cancreateuser",
        "btcpay.server.candeleteuser",
        "btcpay.user.candeleteuser",
        "btcpay.store.canmodifystoresettings",
    ]
)
