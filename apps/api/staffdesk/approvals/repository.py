from staffdesk.platform.security.repository import BaseRepository


class ApprovalSettingRepository(BaseRepository):
    resource = "approvals.setting"


class ApprovalDefaultRepository(BaseRepository):
    resource = "approvals.default"
