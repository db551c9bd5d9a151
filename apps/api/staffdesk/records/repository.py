from staffdesk.platform.security.repository import BaseRepository


class ApprovableRecordRepository(BaseRepository):
    resource = "records.approvable"


class CompanyRepository(BaseRepository):
    resource = "records.company"
