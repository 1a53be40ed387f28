"""SQLAlchemy ORM models for the read-only lending schema"""

from sqlalchemy import Column, Integer, Numeric, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Customer(Base):
    """Borrower profile; customer_since is MM/DD/YYYY text"""

    __tablename__ = "customer"

    customer_id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(Text, nullable=False)
    credit_score = Column(Integer, nullable=True)
    address = Column(Text, nullable=True)
    age = Column(Integer, nullable=True)
    customer_since = Column(Text, nullable=True)


class Loan(Base):
    """Loan account; customer_id is a logical reference (no FK constraint)"""

    __tablename__ = "loan"

    loan_id = Column(Integer, primary_key=True, autoincrement=False)
    customer_id = Column(Integer, nullable=False, index=True)
    loan_amount = Column(Numeric(14, 2), nullable=False)
    loan_purpose = Column(Text, nullable=True)
    default_risk = Column(Text, nullable=True)  # Low | Medium | High
    loan_status = Column(Text, nullable=True)


class Transaction(Base):
    """Repayment activity; transaction_date is MM/DD/YYYY text"""

    __tablename__ = "transaction"

    transaction_id = Column(Integer, primary_key=True, autoincrement=False)
    loan_id = Column(Integer, nullable=False, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    transaction_type = Column(Text, nullable=True)  # EMI Payment | Missed EMI | Prepayment | ...
    transaction_amount = Column(Numeric(14, 2), nullable=True)
    status = Column(Text, nullable=True)  # Successful | Failed | ...
    transaction_date = Column(Text, nullable=True)


class BehaviorLog(Base):
    """Customer location observations"""

    __tablename__ = "behavior_log"

    log_id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, nullable=False, index=True)
    location = Column(Text, nullable=True)


class CustomerFeedback(Base):
    """Free-text feedback with a signed sentiment score"""

    __tablename__ = "customer_feedback"

    feedback_id = Column(Integer, primary_key=True, autoincrement=True)
    loan_id = Column(Integer, nullable=False, index=True)
    feedback_text = Column(Text, nullable=True)
    sentiment_score = Column(Numeric(6, 3), nullable=True)
