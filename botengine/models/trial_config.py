import uuid

from sqlalchemy import Boolean, Column, Integer, Text, Uuid

from botengine.database import Base, JSONType


class TrialIntegrationConfig(Base):
    __tablename__ = "trial_integration_configs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False, unique=True)
    endpoint_url = Column(Text)
    http_method = Column(Text, nullable=False, default="POST")
    api_key = Column(Text)
    username_prefix = Column(Text, nullable=False, default="teste")
    client_name_prefix = Column(Text, nullable=False, default="Teste")
    test_counter = Column(Integer, nullable=False, default=0)
    default_duration_hours = Column(Integer, nullable=False, default=2)
    category = Column(Text, default="IPTV")
    # Dot paths into the provider's JSON response
    map_login_path = Column(Text, default="username")
    map_password_path = Column(Text, default="password")
    map_dns_path = Column(Text, default="dns")
    map_expiration_path = Column(Text, default="expiresAtFormatted")
    detect_renewal_enabled = Column(Boolean, nullable=False, default=False)
    detect_renewal_keywords = Column(JSONType)
    is_active = Column(Boolean, nullable=False, default=True)
