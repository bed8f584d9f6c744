"""
PostureLab module for clinical posture and movement assessments.
"""
