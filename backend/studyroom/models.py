from studyroom import db
import json
import time


class TimerSnapshot(db.Model):
    __tablename__ = 'timer_snapshot'
    user_id = db.Column(db.String(128), primary_key=True)
    name = db.Column(db.String(128), nullable=True)
    payload = db.Column(db.Text, nullable=False)  # JSON-encoded engine snapshot
    last_save_timestamp = db.Column(db.Float, nullable=False, default=time.time, index=True)

    def load_payload(self):
        """Decoded snapshot, or None if the stored JSON is unreadable."""
        try:
            data = json.loads(self.payload) if self.payload else None
        except (TypeError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        data['user_id'] = self.user_id
        data.setdefault('last_save_timestamp', self.last_save_timestamp)
        return data

    def store_payload(self, data):
        self.payload = json.dumps(data)
        self.name = data.get('name')
        self.last_save_timestamp = float(data.get('last_save_timestamp') or time.time())

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'name': self.name,
            'last_save_timestamp': self.last_save_timestamp,
        }
