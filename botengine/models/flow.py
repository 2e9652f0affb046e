import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from botengine.database import Base, JSONType


class BotFlow(Base):
    __tablename__ = "bot_flows"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    name = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    nodes = relationship("BotFlowNode", back_populates="flow")
    edges = relationship("BotFlowEdge", back_populates="flow")


class BotFlowNode(Base):
    __tablename__ = "bot_flow_nodes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    flow_id = Column(Uuid, ForeignKey("bot_flows.id"), nullable=False)
    tenant_id = Column(Uuid, nullable=False)
    node_type = Column(Text, nullable=False)  # start, message, input, condition, action, end
    config = Column(JSONType, nullable=False, default=dict)
    is_entry_point = Column(Boolean, nullable=False, default=False)
    position = Column(Integer, nullable=False, default=0)

    flow = relationship("BotFlow", back_populates="nodes")


class BotFlowEdge(Base):
    __tablename__ = "bot_flow_edges"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    flow_id = Column(Uuid, ForeignKey("bot_flows.id"), nullable=False)
    source_node_id = Column(Uuid, ForeignKey("bot_flow_nodes.id"), nullable=False)
    target_node_id = Column(Uuid, ForeignKey("bot_flow_nodes.id"), nullable=False)
    condition_type = Column(Text, nullable=False, default="always")  # always, equals, numeric_equals, contains, regex
    condition_value = Column(Text)
    priority = Column(Integer, nullable=False, default=0)

    flow = relationship("BotFlow", back_populates="edges")
